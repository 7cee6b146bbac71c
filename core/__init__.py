"""core/ -- Models, exceptions, configuration and observables.

Layer rule: core/ imports only stdlib + third-party libraries.
Every other package may import from core/.
"""
