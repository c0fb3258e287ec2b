"""rostercheck: biometric check-in engine for sports-league rosters.

Resolves the model bundle from interchangeable sources, runs a fast tracking
detector alongside a deep 128-D descriptor pipeline, gates frames on face
size, and matches descriptors against enrolled identities locally or through
a cloud inference endpoint.
"""

__version__ = "0.1.0"
