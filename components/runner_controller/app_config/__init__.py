"""Configuration of the controller process."""
