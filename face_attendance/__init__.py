"""
Face Attendance with SCRFD, 106-point landmarks and ArcFace ONNX

This package identifies employees from a single photo and records attendance:
- Face detection using SCRFD (ONNX Runtime)
- 106-point facial landmarks and a 112x112 aligned face
- ArcFace embedding generation using ONNX Runtime
- Cosine matching against enrolled reference photos
- Alternating ENTRADA / SALIDA records per employee
"""

__version__ = "1.0.0"
