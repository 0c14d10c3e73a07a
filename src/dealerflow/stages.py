from enum import Enum

ENGAGED_STAGES = {"qualifying", "browsing", "comparing", "negotiating", "scheduling"}
CLOSING_STAGES = {"negotiating", "scheduling", "handoff"}
TERMINAL_STAGES = {"handoff", "idle"}


class Stage(Enum):
    GREETING = "greeting"
    QUALIFYING = "qualifying"
    BROWSING = "browsing"
    COMPARING = "comparing"
    NEGOTIATING = "negotiating"
    SCHEDULING = "scheduling"
    HANDOFF = "handoff"
    IDLE = "idle"

    @property
    def is_engaged(self) -> bool:
        return self.value in ENGAGED_STAGES

    @property
    def is_closing(self) -> bool:
        return self.value in CLOSING_STAGES

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STAGES
