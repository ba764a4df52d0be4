import ast
import unittest
from pathlib import Path


_ROUTES_DIR = Path(__file__).resolve().parents[1] / "contract_hub" / "routes"


class RoutesLayeringTest(unittest.TestCase):
    def _route_handlers(self, filename: str, blueprint: str):
        source = (_ROUTES_DIR / filename).read_text(encoding="utf-8")
        module = ast.parse(source)
        lines = source.splitlines()
        for node in module.body:
            if not isinstance(node, ast.FunctionDef):
                continue
            decorator_src = "\n".join(lines[d.lineno - 1] for d in node.decorator_list)
            if f"@{blueprint}.route" not in decorator_src:
                continue
            yield node.name, "\n".join(lines[node.lineno - 1 : node.end_lineno])

    def test_route_handlers_do_not_embed_sql_or_flow_rules(self) -> None:
        forbidden_snippets = (
            "db.execute(",
            "flow_policy.enforce(",
            "flow_policy.is_allowed(",
            "Repository(",
        )
        handlers = list(self._route_handlers("contract_routes.py", "contracts_bp"))
        handlers += list(self._route_handlers("admin_routes.py", "admin_bp"))
        self.assertTrue(handlers)

        for name, body_src in handlers:
            for snippet in forbidden_snippets:
                self.assertNotIn(
                    snippet,
                    body_src,
                    msg=f"Route handler `{name}` should not contain `{snippet}`",
                )

    def test_routes_do_not_import_repositories(self) -> None:
        for path in _ROUTES_DIR.glob("*.py"):
            source = path.read_text(encoding="utf-8")
            self.assertNotIn("contract_hub.infrastructure", source, msg=path.name)


if __name__ == "__main__":
    unittest.main()
