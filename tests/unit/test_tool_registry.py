import pytest
from pydantic import BaseModel, Field, ValidationError

from doc_router.agent.registry import (
    QueryInput,
    Tool,
    ToolRegistry,
    sanitize_tool_name,
    unique_tool_names,
)
from doc_router.errors import InvalidConfiguration, UnknownTool


class EchoInput(BaseModel):
    value: int = Field(ge=1)


def _echo_tool(name: str = "echo") -> Tool:
    def _handler(data: EchoInput) -> str:
        return str(data.value)

    return Tool(
        name=name,
        description="echo positive int",
        args_schema=EchoInput,
        handler=_handler,
    )


def test_tool_registry_validation() -> None:
    registry = ToolRegistry()
    registry.register(_echo_tool())

    assert registry.execute("echo", {"value": 3}) == "3"

    with pytest.raises(ValidationError):
        registry.execute("echo", {"value": 0})


def test_duplicate_tool_registration_rejected() -> None:
    registry = ToolRegistry()
    registry.register(_echo_tool())

    with pytest.raises(InvalidConfiguration):
        registry.register(_echo_tool())
    with pytest.raises(ValueError):
        ToolRegistry([_echo_tool(), _echo_tool()])


def test_unknown_tool_lists_valid_names() -> None:
    registry = ToolRegistry([_echo_tool("alpha"), _echo_tool("beta")])

    with pytest.raises(UnknownTool) as excinfo:
        registry.execute("gamma", {"value": 1})

    assert excinfo.value.valid_names == ["alpha", "beta"]
    assert "alpha, beta" in str(excinfo.value)
    assert "gamma" not in registry


def test_default_schema_requires_non_empty_input() -> None:
    tool = Tool(
        name="vector_tool_Canada",
        description="Useful for specific questions about Canada",
        handler=lambda data: data.input.upper(),
    )

    assert tool.args_schema is QueryInput
    assert tool.invoke({"input": "ottawa"}) == "OTTAWA"
    with pytest.raises(ValidationError):
        tool.invoke({"input": ""})


@pytest.mark.parametrize("name", ["", "has space", "x" * 65, "semi;colon"])
def test_tool_name_must_be_provider_safe(name: str) -> None:
    with pytest.raises(ValidationError):
        Tool(name=name, description="anything", handler=lambda data: "")


def test_tool_description_must_not_be_blank() -> None:
    with pytest.raises(ValidationError):
        Tool(name="blank", description="   ", handler=lambda data: "")


def test_langchain_export_keeps_names_and_routes_through_registry() -> None:
    registry = ToolRegistry([_echo_tool("alpha")])
    observed = []
    registry.set_observer(observed.append)

    exported = registry.as_langchain_tools()

    assert [tool.name for tool in exported] == ["alpha"]
    assert exported[0].description == "echo positive int"
    assert exported[0].invoke({"value": 7}) == "7"
    assert [trace.name for trace in observed] == ["alpha"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Canada", "Canada"),
        ("New Zealand", "New_Zealand"),
        ("São Tomé", "S_o_Tom"),
        ("!!", "document"),
    ],
)
def test_sanitize_tool_name(raw: str, expected: str) -> None:
    assert sanitize_tool_name(raw) == expected


def test_sanitized_fragment_fits_longest_tool_prefix() -> None:
    fragment = sanitize_tool_name("x" * 100)

    assert Tool(name=f"summary_tool_{fragment}", description="ok", handler=lambda data: "")


def test_unique_tool_names_disambiguate_colliding_ids() -> None:
    names = unique_tool_names(["New York", "New_York", "Canada"])
    reordered = unique_tool_names(["Canada", "New_York", "New York"])

    assert names["Canada"] == "Canada"
    assert names["New York"] != names["New_York"]
    assert all(names[doc].startswith("New_York_") for doc in ("New York", "New_York"))
    assert names == reordered
    for fragment in unique_tool_names(["y" * 60 + "a", "y" * 60 + "b"]).values():
        Tool(name=f"summary_tool_{fragment}", description="ok", handler=lambda data: "")


class _NullEngine:
    def query(self, text: str):
        raise AssertionError("not called")


def test_factories_raise_configuration_errors() -> None:
    with pytest.raises(InvalidConfiguration, match="has space"):
        Tool.from_query_engine(_NullEngine(), name="has space", description="anything")
    with pytest.raises(InvalidConfiguration):
        Tool.from_query_engine(_NullEngine(), name="blank", description="   ")
