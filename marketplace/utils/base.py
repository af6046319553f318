import enum
import pydantic


enum_serializer = pydantic.PlainSerializer(
    lambda value: value.value if isinstance(value, enum.Enum) else value,
    return_type=str,
)


def enum_column_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Store enum members by value, not by name."""
    return [e.value for e in enum_cls]
