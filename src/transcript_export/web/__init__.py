"""HTTP surface for the export pipeline."""
