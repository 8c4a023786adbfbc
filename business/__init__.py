"""业务层：可用性检查、催款、Autopilot 与调度。"""
