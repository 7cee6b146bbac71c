"""api/ -- Request pipeline and the typed backend facade.

Layer rule: api/ imports core/, storage/ and auth/.
"""
