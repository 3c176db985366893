"""core/ -- Settings kernel. Imports nothing from auth/ or api/."""
