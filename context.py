from dataclasses import dataclass, field


@dataclass(frozen=True)
class FlashMessage:
    level: str  # "success" | "info" | "error"
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"level": self.level, "message": self.message}


@dataclass
class UserContext:
    """The authenticated user plus the flash messages raised while serving them."""

    user_id: int
    messages: list[FlashMessage] = field(default_factory=list)

    def flash(self, level: str, message: str) -> None:
        self.messages.append(FlashMessage(level, message))

    def errors(self) -> list[str]:
        return [m.message for m in self.messages if m.level == "error"]
