"""auth/ -- Token lifecycle, capability resolution and field-level access control.

Layer rule: auth/ imports only stdlib + third-party libraries, core/ and entities/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
