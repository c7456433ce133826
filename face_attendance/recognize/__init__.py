"""Per-stage recognition components: detector, landmarks/aligner, embedder, matcher."""
