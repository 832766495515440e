"""The runner controller process."""
