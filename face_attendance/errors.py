"""
Exceptions raised by the identification pipeline.

Only real failures live here. "No face", "no match" and "employee not
eligible" are ordinary outcomes and are reported through
`recognize.types.Reason`, never raised.
"""


class FaceAttendanceError(Exception):
    """Base class for every error raised by face_attendance."""


class ConfigError(FaceAttendanceError):
    pass


class DecodeError(FaceAttendanceError):
    """The image buffer could not be decoded."""


class ModelNotLoaded(FaceAttendanceError):
    """A model file is missing or the runtime refused to load it."""


class ModelInferenceFailed(FaceAttendanceError):
    """A model ran but its call failed or produced unusable output."""


class InferenceTimeout(ModelInferenceFailed):
    pass


class EmbeddingExtractionError(ModelInferenceFailed):
    pass


class LandmarkDecodeError(ModelInferenceFailed):
    pass


class EnrollmentError(FaceAttendanceError):
    pass
