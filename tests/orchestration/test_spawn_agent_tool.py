import asyncio
import unittest

from relay_loop.session_config import SessionConfig
from relay_loop.tools.spawn_agent_tool import AgentProfile, SpawnAgentTool
from tests.session.fakes import ScriptedProvider, make_services, text_response


class SpawnAgentToolTests(unittest.TestCase):
    def test_schema_and_description_list_agents(self) -> None:
        tool = SpawnAgentTool(make_services(ScriptedProvider()))
        tool.register("researcher", AgentProfile("Research things."))

        self.assertEqual("spawn_agent", tool.name)
        self.assertIn("researcher", tool.description)
        self.assertEqual(["agent_name", "task"], tool.input_schema["required"])
        self.assertEqual(["researcher"], tool.available_agents())

    def test_unknown_agent(self) -> None:
        tool = SpawnAgentTool(make_services(ScriptedProvider()), {"writer": AgentProfile("Write.")})

        out = asyncio.run(tool.execute({"agent_name": "painter", "task": "paint"}))

        self.assertIn("Unknown sub-agent 'painter'", out["error"])
        self.assertIn("writer", out["error"])

    def test_runs_child_session(self) -> None:
        provider = ScriptedProvider(text_response("child output", input_tokens=10, output_tokens=10))
        services = make_services(provider, default_config=SessionConfig(max_turns=30))
        tool = SpawnAgentTool(services, {"writer": AgentProfile("Write.", model="gpt-4o", max_turns=2)})

        out = asyncio.run(tool.execute({"agent_name": "writer", "task": "Draft it", "context": "brand: Acme"}))

        self.assertEqual("writer", out["agent"])
        self.assertEqual("completed", out["status"])
        self.assertEqual("child output", out["output"])
        self.assertEqual(1, out["turns_used"])
        self.assertEqual("Write.", provider.calls[0]["system_prompt"])
        self.assertEqual("gpt-4o", provider.calls[0]["model"])
        first = provider.calls[0]["messages"][0]["content"]
        self.assertTrue(first.startswith("Draft it"))
        self.assertIn('"parent_context": "brand: Acme"', first)

    def test_failing_child_is_reported(self) -> None:
        provider = ScriptedProvider(RuntimeError("child crashed"))
        tool = SpawnAgentTool(make_services(provider), {"writer": AgentProfile("Write.")})

        out = asyncio.run(tool.execute({"agent_name": "writer", "task": "Draft it"}))

        self.assertEqual({"agent": "writer", "status": "failed", "error": "child crashed"}, out)


if __name__ == "__main__":
    unittest.main()
