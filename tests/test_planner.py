import pytest

from collabcore.config import OrchestratorConfig
from collabcore.errors import ValidationError
from collabcore.graph import GraphError
from collabcore.orchestration import ExecutionPlanner, Task


def plan_for(brief, **config):
    return ExecutionPlanner(OrchestratorConfig(**config)).plan(Task(brief=brief))


def test_phases_depend_on_the_previous_phase_by_default():
    plan = plan_for(
        {
            "phases": [
                {"name": "research", "roles": ["researcher", "analyst"], "parallel": True},
                {"name": "draft", "roles": ["writer"]},
            ]
        }
    )
    assert [p.phase_id for p in plan.phases] == ["research", "draft"]
    assert plan.phase("draft").depends_on == ["research"]
    assert plan.phase("research").depends_on == []
    assert plan.phase("research").should_negotiate is True
    assert plan.phase("draft").timeout == 300.0


def test_explicit_dependencies_reorder_phases():
    plan = plan_for(
        {
            "phases": [
                {"name": "review", "roles": ["reviewer"], "depends_on": ["draft"]},
                {"name": "draft", "roles": ["writer"], "depends_on": [], "timeout": 30},
            ]
        }
    )
    assert [p.phase_id for p in plan.phases] == ["draft", "review"]
    assert plan.phase("draft").timeout == 30.0


def test_cyclic_dependencies_are_rejected():
    with pytest.raises(GraphError):
        plan_for(
            {
                "phases": [
                    {"name": "a", "roles": ["writer"], "depends_on": ["b"]},
                    {"name": "b", "roles": ["reviewer"], "depends_on": ["a"]},
                ]
            }
        )


def test_template_from_config_and_roles_fallback():
    plans = {"report": [{"name": "draft", "roles": ["writer"], "capabilities": {"writer": ["write"]}}]}
    plan = plan_for({"task_type": "report"}, plans=plans)
    assert plan.phase("draft").capabilities_for("writer") == ["write"]

    fallback = plan_for({"task_type": "memo", "roles": ["writer", "reviewer"]}, plans=plans)
    assert len(fallback.phases) == 1
    assert fallback.phases[0].phase_id == "main"
    assert fallback.phases[0].parallel is False
    assert fallback.phases[0].required_roles == ["writer", "reviewer"]


@pytest.mark.parametrize(
    "brief",
    [
        {"task_type": "memo"},
        {"phases": [{"name": "a", "roles": []}]},
        {"phases": [{"name": "a", "roles": ["writer"], "timeout": 0}]},
        {"phases": [{"name": "a", "roles": ["writer"], "owner": "me"}]},
        {"phases": ["draft"]},
    ],
)
def test_malformed_briefs_are_rejected(brief):
    with pytest.raises(ValidationError):
        plan_for(brief)
