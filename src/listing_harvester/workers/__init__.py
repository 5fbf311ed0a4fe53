"""Job execution: queue, worker, browser session, retry/delay policy, exports and webhooks."""
