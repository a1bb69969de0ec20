from src import main as cli


class DummyResp:
    def __init__(self, content=b"", status_code=200, text="", headers=None):
        self.content = content
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 300


def test_generate_writes_image(tmp_path, monkeypatch):
    monkeypatch.setattr(
        "requests.post",
        lambda url, json=None, headers=None, timeout=None: DummyResp(b"jpeg-bytes", headers={"Content-Type": "image/jpeg"}),
    )
    out = tmp_path / "fox.jpg"
    rc = cli.generate("a red fox", output=str(out), variant="byok", credential="hf_user")
    assert rc == cli.EXIT_OK
    assert out.read_bytes() == b"jpeg-bytes"


def test_generate_http_error_exit_code(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(
        "requests.post", lambda url, json=None, headers=None, timeout=None: DummyResp(status_code=503, text="overloaded")
    )
    rc = cli.generate("a red fox", output=str(tmp_path / "x.png"), variant="byok", credential="hf_user")
    assert rc == cli.EXIT_ERROR
    assert "overloaded" in capsys.readouterr().out
    assert not (tmp_path / "x.png").exists()


def test_hosted_without_token_fails(monkeypatch):
    monkeypatch.delenv("HF_API_TOKEN", raising=False)
    assert cli.generate("a red fox", variant="hosted", persist=False) == cli.EXIT_ERROR


def test_nsfw_decline_exit_code(monkeypatch):
    def fake_post(*args, **kwargs):
        raise AssertionError("declined request must not be sent")

    monkeypatch.setattr("requests.post", fake_post)
    rc = cli.generate(
        "portrait", model_id="UnfilteredAI/NSFW-gen-v2", variant="hosted", persist=False,
        credential="tok", ask=lambda question: False,
    )
    assert rc == cli.EXIT_DECLINED


def test_dry_run_via_main(tmp_path, monkeypatch):
    monkeypatch.delenv("HF_API_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)
    out = tmp_path / "placeholder.png"
    rc = cli.main(["generate", "--prompt", "a red fox", "--dry-run", "--variant", "hosted",
                   "--no-persist", "--output", str(out)])
    assert rc == cli.EXIT_OK
    assert out.read_bytes().startswith(b"\x89PNG")


def test_models_listing(capsys):
    assert cli.main(["models", "--variant", "hosted"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "black-forest-labs/FLUX.1-schnell" in out
    assert "[negative-prompt, nsfw]" in out
