"""HTTP surface for the KCT governance engine."""
