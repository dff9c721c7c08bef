from juice.juice_runtime import ScriptRunner

__all__ = ["ScriptRunner"]
