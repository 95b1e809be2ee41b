"""
Tests for graph construction, validation and edge routing
"""
import pytest

from workflow.edges import END, START, ConditionalEdge, EdgeRouter, FixedEdge
from workflow.errors import GraphValidationError, RoutingError
from workflow.graph import WorkflowBuilder, WorkflowGraph
from workflow.node import Node, node
from workflow.state import StateContainer, StateField, StateSchema


def noop(state):
    return {}


def make_node(name, writes=()):
    return Node(name=name, func=noop, writes=writes)


class TestEdgeRouting:
    """Test fixed and conditional edge resolution"""

    def test_fixed_edge(self):
        """Test a fixed edge always yields its target"""
        router = EdgeRouter()
        router.add(FixedEdge(source="a", target="b"))

        assert router.resolve("a", StateContainer()) == "b"
        assert router.get("a").traversal_count == 1

    def test_first_matching_branch_wins(self):
        """Test branches are evaluated in order"""
        edge = ConditionalEdge.from_pairs(
            "a",
            [(lambda s: s["x"] > 0, "positive"), (lambda s: s["x"] > 10, "large")],
            default="other"
        )

        assert edge.resolve(StateContainer({"x": 20})) == "positive"

    def test_default_when_no_branch_matches(self):
        """Test the default branch is taken when nothing holds"""
        edge = ConditionalEdge.from_pairs(
            "a",
            [(lambda s: s["x"] == 1, "one"), (lambda s: s["x"] == 2, "two")],
            default="fallback"
        )

        assert edge.resolve(StateContainer({"x": 3})) == "fallback"

    def test_routing_is_deterministic(self):
        """Test resolving twice on the same state gives the same node"""
        router = EdgeRouter()
        router.add(ConditionalEdge.from_pairs(
            "a", [(lambda s: s["failed"], "recover")], default="finish"
        ))
        state = StateContainer({"failed": True})

        assert router.resolve("a", state) == router.resolve("a", state) == "recover"
        assert router.get("a").traversal_counts == {"recover": 2}

    def test_conditional_edge_requires_default(self):
        """Test a conditional edge without a default is rejected"""
        with pytest.raises(GraphValidationError):
            ConditionalEdge.from_pairs("a", [(lambda s: True, "b")], default="")

    def test_mapping_edge(self):
        """Test selector values are looked up in the mapping"""
        edge = ConditionalEdge.from_mapping(
            "coordinator",
            lambda s: s.get("decision"),
            {"booker": "booker", "info": "info"},
            default="unclear"
        )

        assert edge.resolve(StateContainer({"decision": "info"})) == "info"
        assert edge.resolve(StateContainer({"decision": "weather"})) == "unclear"
        assert edge.targets == ["booker", "info", "unclear"]

    def test_missing_edge(self):
        """Test resolving from a node without an edge fails"""
        with pytest.raises(RoutingError):
            EdgeRouter().resolve("nowhere", StateContainer())

    def test_second_outgoing_edge_rejected(self):
        """Test a node has at most one outgoing edge"""
        router = EdgeRouter()
        router.add(FixedEdge(source="a", target="b"))

        with pytest.raises(GraphValidationError):
            router.add(FixedEdge(source="a", target="c"))


class TestWorkflowGraph:
    """Test graph validation"""

    def test_valid_linear_graph(self):
        """Test a simple graph passes validation"""
        graph = WorkflowGraph("linear")
        graph.add_node(make_node("a"))
        graph.add_node(make_node("b"))
        graph.add_edge(START, "a")
        graph.add_edge("a", "b")
        graph.set_finish_point("b")

        assert graph.validate() == []
        assert graph.check() is graph
        assert graph.entry_point == "a"

    def test_missing_entry_point(self):
        """Test a graph needs an entry point"""
        graph = WorkflowGraph("no-entry")
        graph.add_node(make_node("a"))
        graph.add_edge("a", END)

        assert "Workflow has no entry point" in graph.validate()

    def test_edge_to_unknown_node(self):
        """Test edges must target registered nodes"""
        graph = WorkflowGraph("dangling")
        graph.add_node(make_node("a"))
        graph.set_entry_point("a")
        graph.add_edge("a", "ghost")

        with pytest.raises(GraphValidationError) as exc_info:
            graph.check()

        assert any("ghost" in error for error in exc_info.value.errors)

    def test_node_without_outgoing_edge(self):
        """Test every node must lead somewhere"""
        graph = WorkflowGraph("dead-end")
        graph.add_node(make_node("a"))
        graph.add_node(make_node("b"))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")

        assert "Node b has no outgoing edges" in graph.validate()

    def test_duplicate_and_reserved_names(self):
        """Test node names are unique and not reserved markers"""
        graph = WorkflowGraph("names")
        graph.add_node(make_node("a"))

        with pytest.raises(GraphValidationError):
            graph.add_node(make_node("a"))
        with pytest.raises(GraphValidationError):
            graph.add_node(make_node(END))

    def test_cycles_rejected_unless_allowed(self):
        """Test loops require allow_cycles"""
        for allow in (False, True):
            graph = WorkflowGraph("loop", allow_cycles=allow)
            graph.add_node(make_node("a"))
            graph.add_node(make_node("b"))
            graph.set_entry_point("a")
            graph.add_edge("a", "b")
            graph.add_conditional_edges("b", [(lambda s: True, END)], default="a")

            errors = graph.validate()
            assert ("Workflow contains cycles (not a valid DAG)" in errors) is not allow

    def test_fields_checked_against_schema(self):
        """Test nodes may only declare fields the schema knows"""
        schema = StateSchema("s", [StateField("query", str)])
        graph = WorkflowGraph("fields", schema=schema)
        graph.add_node(make_node("a", writes={"answer"}))
        graph.set_entry_point("a")
        graph.add_edge("a", END)

        errors = graph.validate()

        assert any("answer" in error for error in errors)

    def test_parallel_members_need_disjoint_writes(self):
        """Test two members of a group may not write the same field"""
        graph = WorkflowGraph("fan-out")
        graph.add_node(make_node("left", writes={"summary"}))
        graph.add_node(make_node("right", writes={"summary"}))
        graph.add_parallel("both", ["left", "right"])
        graph.set_entry_point("both")
        graph.add_edge("both", END)

        errors = graph.validate()

        assert any("both write 'summary'" in error for error in errors)

    def test_parallel_member_cannot_have_own_edge(self):
        """Test group members are wired only through their group"""
        graph = WorkflowGraph("fan-out")
        graph.add_node(make_node("left", writes={"x"}))
        graph.add_node(make_node("right", writes={"y"}))
        graph.add_parallel("both", ["left", "right"])
        graph.set_entry_point("both")
        graph.add_edge("both", END)
        graph.add_edge("left", END)

        errors = graph.validate()

        assert any("must not have its own outgoing edge" in error for error in errors)

    def test_parallel_group_needs_two_members(self):
        """Test a group of one is rejected"""
        graph = WorkflowGraph("fan-out")
        graph.add_node(make_node("only"))

        with pytest.raises(GraphValidationError):
            graph.add_parallel("group", ["only"])

    def test_to_dict(self):
        """Test the serialized structure lists nodes, groups and edges"""
        graph = WorkflowGraph("serialized", description="demo")
        graph.add_node(make_node("a", writes={"x"}))
        graph.set_entry_point("a")
        graph.add_conditional_edges("a", [(lambda s: False, END)], default=END)

        data = graph.to_dict()

        assert data["entry_point"] == "a"
        assert data["nodes"][0]["writes"] == ["x"]
        assert data["edges"][0]["type"] == "conditional"
        assert data["edges"][0]["default"] == END


class TestNodeDecorator:
    """Test building nodes from functions"""

    def test_decorator_uses_function_name_and_doc(self):
        """Test the decorator picks up name and first doc line"""
        @node(reads={"query"}, writes={"answer"})
        def answer_question(state):
            """Answer the query.

            More detail here.
            """
            return {"answer": state["query"]}

        assert answer_question.name == "answer_question"
        assert answer_question.description == "Answer the query."
        assert answer_question.writes == frozenset({"answer"})

    def test_empty_name_rejected(self):
        """Test a node needs a name"""
        with pytest.raises(ValueError):
            Node(name="", func=noop)


class TestWorkflowBuilder:
    """Test the fluent builder"""

    def test_linear_chain(self):
        """Test then() chains nodes and build() closes the chain"""
        graph = (
            WorkflowBuilder("chain")
            .then(make_node("a"))
            .then(make_node("b"))
            .build()
        )

        assert graph.entry_point == "a"
        assert graph.router.successors("a") == ["b"]
        assert graph.router.successors("b") == [END]

    def test_branch_routes_to_end(self):
        """Test branch targets finish unless connected"""
        graph = (
            WorkflowBuilder("split")
            .then(make_node("check"))
            .branch([(lambda s: s.get("ok"), make_node("good"))], default=make_node("bad"))
            .build()
        )

        assert graph.router.successors("check") == ["good", "bad"]
        assert graph.router.successors("good") == [END]
        assert graph.router.successors("bad") == [END]

    def test_branch_needs_preceding_step(self):
        """Test branch() cannot start a workflow"""
        with pytest.raises(GraphValidationError):
            WorkflowBuilder("bad").branch([], default=make_node("x"))
