"""Per-call media bridge: inbound accumulation, outbound pacing and turn tracking."""
