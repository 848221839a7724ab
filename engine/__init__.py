"""Recipe expansion, ranking and state mutators for the workshop economy."""
