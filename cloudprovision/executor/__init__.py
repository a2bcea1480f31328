"""Two-phase terraform apply: folder definitions, failure classification, retry and output parsing."""
