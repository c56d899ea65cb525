"""One module per VTOP screen; each exposes parse_* helpers and a get_* coroutine."""
