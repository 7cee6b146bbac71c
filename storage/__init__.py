"""storage/ -- Encrypted persistence of credentials and preferences.

Layer rule: storage/ imports core/ only.
"""
