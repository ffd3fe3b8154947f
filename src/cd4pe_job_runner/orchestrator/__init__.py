"""Job execution orchestrator: layout, command assembly, lifecycle and outcome."""
