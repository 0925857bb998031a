import json
import stat
import sys
from pathlib import Path

import pytest

# Stand-ins for the CBMC tool suite. Each one appends its argv to a calls
# file and produces an output derived from its inputs, so artifacts are
# deterministic and comparable byte for byte.
FAKE_HEADER = '''#!{python}
import json, sys
from pathlib import Path
args = sys.argv[1:]
with open({calls!r}, "a") as f:
    f.write(json.dumps([{name!r}] + args) + "\\n")
'''

FAKE_BODIES = {
    "goto-cc": '''
out = args[args.index("-o") + 1]
files = [a for a in args if a != out and Path(a).is_file()]
text = "".join(Path(p).read_text() for p in files)
if "#error" in text:
    print("error: #error directive")
    sys.exit(1)
Path(out).write_text("GOTO\\n" + text)
print("linked", len(files), "file(s)")
''',
    "goto-instrument": '''
src, dst = args[-2], args[-1]
flags = [a for a in args[:-2] if a.startswith("--")]
Path(dst).write_text(Path(src).read_text() + "# " + " ".join(flags) + "\\n")
''',
    "goto-analyzer": '''
src, dst = args[0], args[args.index("--simplify") + 1]
Path(dst).write_text(Path(src).read_text() + "# simplified\\n")
''',
    "cbmc": '''
goto = Path(args[-1]).read_text()
if "CRASH" in goto:
    print("cbmc: internal error")
    sys.exit(6)
if "--show-properties" in args:
    print("<cproverOutput><property name='foo.assertion.1'/></cproverOutput>")
    sys.exit(0)
if "--cover" in args:
    print("<cproverOutput><goal id='foo.coverage.1' status='SATISFIED'/></cproverOutput>")
    sys.exit(0)
if "__CPROVER_assert(0" in goto:
    print("Trace for foo.assertion.1:")
    print("  State 1 file foo.c line 3")
    print("VERIFICATION FAILED")
    sys.exit(10)
print("VERIFICATION SUCCESSFUL")
''',
    "cbmc-viewer": '''
html = Path(args[args.index("--htmldir") + 1])
html.mkdir(parents=True, exist_ok=True)
(html / "index.html").write_text("<html>report</html>")
''',
}

TOOL_KEYS = {
    "goto-cc": "goto_cc",
    "goto-instrument": "goto_instrument",
    "goto-analyzer": "goto_analyzer",
    "cbmc": "cbmc",
    "cbmc-viewer": "cbmc_viewer",
}

PASSING_HARNESS = "void foo(void)\n{\n    __CPROVER_assert(1, \"always true\");\n}\n"
FAILING_HARNESS = "void foo(void)\n{\n    __CPROVER_assert(0, \"always false\");\n}\n"


class FakeTools:
    def __init__(self, root: Path):
        self.bin = root / "bin"
        self.bin.mkdir()
        self.calls_file = root / "calls.jsonl"
        self.calls_file.touch()
        self.paths = {}
        for name, body in FAKE_BODIES.items():
            script = self.bin / name
            script.write_text(FAKE_HEADER.format(python=sys.executable, calls=str(self.calls_file), name=name) + body)
            script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            self.paths[TOOL_KEYS[name]] = str(script)

    def calls(self, tool=None):
        lines = [json.loads(l) for l in self.calls_file.read_text().splitlines() if l.strip()]
        if tool is not None:
            lines = [l for l in lines if l[0] == tool]
        return lines

    def reset(self):
        self.calls_file.write_text("")


@pytest.fixture
def fake_tools(tmp_path):
    return FakeTools(tmp_path)


def make_proof(root: Path, fake_tools: FakeTools, entry: str = "foo", harness: str = PASSING_HARNESS, **config) -> Path:
    """Creates a proof directory with <entry>.c and proof.json."""
    root.mkdir(parents=True, exist_ok=True)
    (root / f"{entry}.c").write_text(harness.replace("foo", entry))
    data = {"entry": entry, "tools": fake_tools.paths}
    data.update(config)
    (root / "proof.json").write_text(json.dumps(data))
    return root


@pytest.fixture
def make_proof_dir(tmp_path, fake_tools):
    """Factory: make_proof_dir("bar", failing=True, simplify=True) -> proof directory."""
    def factory(entry: str = "foo", failing: bool = False, harness: str = None, **config) -> Path:
        if harness is None:
            harness = FAILING_HARNESS if failing else PASSING_HARNESS
        return make_proof(tmp_path / "proofs" / entry, fake_tools, entry, harness, **config)
    return factory


@pytest.fixture
def proof_dir(make_proof_dir):
    return make_proof_dir()
