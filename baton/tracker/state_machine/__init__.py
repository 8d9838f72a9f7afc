from baton.tracker.state_machine.machine import TaskStateMachine

__all__ = ["TaskStateMachine"]
