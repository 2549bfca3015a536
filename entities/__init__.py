"""entities/ -- Metaverse entities (accounts, domains, tokens) and their store.

Layer rule: entities/ imports only stdlib, third-party libraries, and core/.
auth/ and api/ import from entities/, not the other way around.
"""
