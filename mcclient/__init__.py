"""Main module for the mcclient API.

The API is split by concern: `auth` keeps the player's credential alive, `resolve`
turns a version (and an optional mod loader) into a flattened profile, `fetch` makes
every file of that profile available locally, `natives` stages platform binaries,
`launch` computes the command line and `process` supervises the running game. The
`launcher` module ties all of them together behind a small set of operations.
"""

LAUNCHER_NAME = "mcclient"
LAUNCHER_VERSION = "1.0.0"
LAUNCHER_AUTHORS = ["mcclient contributors"]
LAUNCHER_URL = "https://github.com/mcclient/mcclient"
