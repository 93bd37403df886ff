"""Service layer: resolution, range negotiation, transcoding and session gating."""
