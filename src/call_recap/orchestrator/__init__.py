"""Job orchestration for call recordings and transcript webhooks.

Why not Celery / Dramatiq / Arq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Jobs here are a handful of sequential calls to slow external services
(transcription, analysis, chat delivery) driven from one process. What the
package has to get right is not queuing but bookkeeping around those calls:

- A forward-only job lifecycle persisted after every stage, so a reader always
  sees which stage is running or which stage failed.
- Deterministic exponential backoff per stage, with permanent failures
  (bad input, malformed model output) ending the job instead of retrying.
- A gate that keeps dry runs and network-disabled runs away from real
  services while loopback `mock:` references still exercise the pipeline.
- A best-effort summary notification whose outcome is recorded apart from
  the job status.

A broker would add an operational dependency for a single-machine,
SQLite-backed tool. asyncio tasks plus the SQLite job store cover the
concurrency this scope needs.
"""
