"""ClawHuddle API: per-member OpenClaw gateway provisioning and lifecycle management."""
