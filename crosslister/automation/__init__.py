from crosslister.automation.timing import ExecutionMode, Timing  # noqa: F401
