"""Multi-dimension orchestration.

Dispatches one tool per enabled dimension concurrently, bounds each with
its own timeout and retry budget, and aggregates the results into one
``OrchestrationResult`` with overall confidence and timing metadata.
"""
