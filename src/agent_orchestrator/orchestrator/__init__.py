"""Task orchestration for registered agents.

Tasks live in SQLite and move pending -> processing -> completed | failed
through compare-and-set updates, so concurrent completions, failures, and
timeout sweeps cannot overwrite each other. Agents run on a bounded worker
pool; multi-step agents fan out through a second pool and keep partial
results when some of their sub-operations fail.
"""
