from judgeindex.api.app import JudgeIndexServer, create_app

__all__ = ["JudgeIndexServer", "create_app"]
