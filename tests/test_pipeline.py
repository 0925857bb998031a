import pytest

from proofbuild.config import load_proof_config
from proofbuild.core.errors import StageFailedError
from proofbuild.pipeline import ABORT_STUB, STAGES, Pipeline
from proofbuild.workspace import Workspace

def build(proof_dir, **kwargs):
    config = load_proof_config(proof_dir, environ={})
    pipeline = Pipeline(config, **kwargs)
    return pipeline, pipeline.build()

def test_stage_table_is_ordered():
    assert [s.index for s in STAGES] == list(range(8))
    names = [s.name for s in STAGES]
    assert names.index("remove-bodies") < names.index("abstractions")
    assert names[-2:] == ["drop-unused-functions", "slice-global-inits"]

def test_default_plan(proof_dir):
    pipeline = Pipeline(load_proof_config(proof_dir, environ={}))
    enabled = {name: on for _, name, on in pipeline.plan()}
    assert enabled == {
        "compile": True,
        "remove-bodies": False,
        "abstractions": False,
        "unwind": False,
        "function-bodies": False,
        "simplify": False,
        "drop-unused-functions": True,
        "slice-global-inits": True,
    }

def test_disabled_stages_are_byte_identical(proof_dir):
    pipeline, final = build(proof_dir)
    ws = pipeline.workspace

    stage0 = ws.artifact(0).read_bytes()
    for i in range(1, 6):
        assert ws.artifact(i).read_bytes() == stage0, f"stage {i} changed the program"
        assert ws.stage_log(i).exists()

def test_end_to_end_only_dead_code_stages_act(proof_dir, fake_tools):
    pipeline, final = build(proof_dir)
    ws = pipeline.workspace

    assert final == ws.final_artifact
    assert final.name == "foo.goto"
    expected = (ws.artifact(0).read_text()
                + "# --drop-unused-functions\n"
                + "# --slice-global-inits\n")
    assert final.read_text() == expected
    assert final.read_bytes() == ws.artifact(7).read_bytes()

    tools = [c[0] for c in fake_tools.calls()]
    assert tools == ["goto-cc", "goto-instrument", "goto-instrument"]

def test_compile_command(proof_dir, fake_tools):
    build(proof_dir)
    (compile_call,) = fake_tools.calls("goto-cc")
    assert "--export-file-local-symbols" in compile_call
    assert compile_call[compile_call.index("--function") + 1] == "foo"
    assert "-DCBMC_OBJECT_BITS=6" in compile_call
    assert "-DDEEP_CHECKS=0" in compile_call
    assert compile_call[-2] == "-o"

def test_every_artifact_has_a_log(proof_dir):
    pipeline, _ = build(proof_dir)
    ws = pipeline.workspace
    for i in range(8):
        assert ws.stage_log(i).exists()
    assert ws.final_log.exists()
    assert "Not removing function bodies" in ws.stage_log(1).read_text()

def test_removal_adds_abort_and_its_stub(make_proof_dir, fake_tools):
    proof = make_proof_dir(remove_function_body=["buffer_grow"])
    pipeline, _ = build(proof)

    remove_call = fake_tools.calls("goto-instrument")[0]
    assert remove_call[1:5] == ["--remove-function-body", "buffer_grow", "--remove-function-body", "abort"]

    compile_calls = fake_tools.calls("goto-cc")
    assert len(compile_calls) == 2
    assert str(ABORT_STUB) in compile_calls[1]
    assert "abort() called" in pipeline.workspace.artifact(2).read_text()

def test_abstractions_without_removal(make_proof_dir, fake_tools, tmp_path):
    stub = tmp_path / "stubs" / "malloc_fail.c"
    stub.parent.mkdir()
    stub.write_text("void *malloc(unsigned long n) { return 0; }\n")
    proof = make_proof_dir(abstractions=[str(stub)])

    pipeline, _ = build(proof)
    enabled = {name: on for _, name, on in pipeline.plan()}
    assert enabled["remove-bodies"] is False
    assert enabled["abstractions"] is True

    link = fake_tools.calls("goto-cc")[1]
    assert str(stub) in link
    assert str(ABORT_STUB) not in link

def test_extra_removals_are_merged(make_proof_dir, fake_tools):
    proof = make_proof_dir(remove_function_body=["a"], extra_remove_function_body=["a", "b"])
    build(proof)
    call = fake_tools.calls("goto-instrument")[0]
    assert call.count("--remove-function-body") == 3
    assert call.count("a") == 1

def test_optional_stages(make_proof_dir, fake_tools):
    proof = make_proof_dir(unwind_goto=True, generate_function_bodies=True, simplify=True,
                           unwind=3, unwindset={"copy.0": 5})
    pipeline, _ = build(proof)
    ws = pipeline.workspace

    instrument = fake_tools.calls("goto-instrument")
    unwind_call = instrument[0]
    assert unwind_call[1:5] == ["--unwind", "3", "--unwindset", "copy.0:5"]
    assert "--generate-function-body" in instrument[1]
    assert len(fake_tools.calls("goto-analyzer")) == 1
    assert "# simplified" in ws.artifact(5).read_text()

def test_rebuild_is_idempotent(proof_dir, fake_tools):
    pipeline, final = build(proof_dir)
    first = {i: pipeline.workspace.artifact(i).read_bytes() for i in range(8)}
    fake_tools.reset()

    pipeline, final2 = build(proof_dir)

    assert fake_tools.calls() == []
    assert {i: pipeline.workspace.artifact(i).read_bytes() for i in range(8)} == first

def test_force_reruns_everything(proof_dir, fake_tools):
    build(proof_dir)
    fake_tools.reset()
    build(proof_dir, force=True)
    assert len(fake_tools.calls()) == 3

def test_source_change_reruns_chain(proof_dir, fake_tools):
    build(proof_dir)
    fake_tools.reset()

    (proof_dir / "foo.c").write_text("void foo(void) { int x = 1; }\n")
    pipeline, final = build(proof_dir)

    assert len(fake_tools.calls()) == 3
    assert "int x = 1" in final.read_text()

def test_config_change_reruns_downstream_only(make_proof_dir, fake_tools):
    proof = make_proof_dir()
    build(proof)
    fake_tools.reset()

    make_proof_dir(simplify=True)
    build(proof)

    tools = [c[0] for c in fake_tools.calls()]
    assert tools == ["goto-analyzer", "goto-instrument", "goto-instrument"]

def test_compile_failure_aborts(make_proof_dir, fake_tools):
    proof = make_proof_dir(harness="#error unsupported\nvoid foo(void) {}\n")
    config = load_proof_config(proof, environ={})
    ws = Workspace.for_config(config)

    with pytest.raises(StageFailedError) as exc:
        Pipeline(config).build()

    assert exc.value.stage == "compile"
    assert "#error directive" in ws.stage_log(0).read_text()
    assert not ws.artifact(1).exists()
    assert not ws.final_artifact.exists()
    # only the compiler ran
    assert [c[0] for c in fake_tools.calls()] == ["goto-cc"]

def test_failed_stage_reruns_next_time(make_proof_dir, fake_tools):
    proof = make_proof_dir(harness="#error unsupported\n")
    with pytest.raises(StageFailedError):
        build(proof)
    fake_tools.reset()
    with pytest.raises(StageFailedError):
        build(proof)
    assert len(fake_tools.calls("goto-cc")) == 1

def test_two_entries_share_a_directory(make_proof_dir, fake_tools):
    proof = make_proof_dir("foo")
    (proof / "bar.c").write_text("void bar(void) {}\n")

    _, foo_goto = build(proof)
    foo_bytes = foo_goto.read_bytes()

    config = load_proof_config(proof, overrides=["entry=bar"], environ={})
    bar_goto = Pipeline(config).build()

    assert bar_goto.name == "bar.goto"
    assert foo_goto.read_bytes() == foo_bytes
    assert "void bar" in bar_goto.read_text()

def test_entry_named_like_a_stage_artifact(make_proof_dir):
    proof = make_proof_dir("foo")
    (proof / "foo0.c").write_text("void foo0(void) { int other; }\n")

    foo_pipeline, _ = build(proof)
    ws = foo_pipeline.workspace
    stage0 = ws.artifact(0).read_bytes()
    stage0_log = ws.stage_log(0).read_text()

    config = load_proof_config(proof, overrides=["entry=foo0"], environ={})
    foo0_final = Pipeline(config).build()

    assert foo0_final != ws.artifact(0)
    assert ws.artifact(0).read_bytes() == stage0
    assert ws.stage_log(0).read_text() == stage0_log
    assert "int other" not in ws.artifact(0).read_text()
    assert "int other" in foo0_final.read_text()
