"""
Search saga pipeline.

Stages (fixed order):  expand → retrieve → rank
  stages.py        stage definitions, fallback policies, stage clients
  workers.py       reply side of each stage (collaborator adapters)
  fusion.py        Reciprocal Rank Fusion of dense + sparse orders

Coordination:
  saga.py          pure per-saga transition function
  state_store.py   in-flight sagas with striped locks
  orchestrator.py  saga coordinator (start / reply / timeout)
  router.py        reply demultiplexer
  runtime.py       wiring and lifecycle
"""
