import json
import sys
from pathlib import Path

import pytest
import requests
from pytest_mock import MockerFixture

from dpb1_epitope.config import CONFIG_PATH_ENV
from dpb1_epitope.match_from_json import compute_match, main
from dpb1_epitope.match_from_json_lib import MatchInput, MatchOutput
from dpb1_epitope.match_service import MatchService
from dpb1_epitope.models import MatchGrade


@pytest.fixture(autouse=True)
def no_config_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)


class TestComputeMatch:
    def test_match(self):
        output: MatchOutput = compute_match(
            MatchInput(
                recipient_gl="HLA-DPB1*09:01+HLA-DPB1*04:01",
                recipient_race="EURCAU",
                donor_gl="HLA-DPB1*04:01+HLA-DPB1*04:01",
                donor_race="EURCAU",
            )
        )
        assert output.errors == []
        assert output.gvh_probability == pytest.approx(1.0)
        assert output.match_grade == MatchGrade.GVH_NONPERMISSIVE
        assert output.trace == []

    def test_trace(self):
        output: MatchOutput = compute_match(
            MatchInput(
                recipient_gl="HLA-DPB1*04:01+HLA-DPB1*02:01",
                donor_gl="HLA-DPB1*04:01+HLA-DPB1*02:01",
                trace=True,
            )
        )
        assert output.match_grade == MatchGrade.MATCH
        assert output.trace[0].startswith("r:HLA-DPB1*04:01")
        assert output.trace[-1].endswith("m:MATCH(p:1.0)")

    def test_invalid_input_not_computed(self, mocker: MockerFixture):
        use_config_mock = mocker.patch.object(MatchService, "use_config")
        output: MatchOutput = compute_match(
            MatchInput(recipient_gl="", donor_gl="HLA-DPB1*04:01")
        )
        assert output.errors == ["Recipient GL string is empty"]
        assert output.match_grade is None
        use_config_mock.assert_not_called()

    @pytest.mark.parametrize(
        "recipient_gl",
        [
            pytest.param("HLA-DPB1*04:01^HLA-DRB1*01:01", id="multilocus"),
            pytest.param("HLA-DPB1*04:01+HLA-DPB1*02:01+HLA-DPB1*03:01", id="three_haplotypes"),
            pytest.param("HLA-DRB1*01:01+HLA-DRB1*15:01", id="no_dpb1"),
            pytest.param("04:01+02:01", id="unqualified_alleles"),
        ],
    )
    def test_bad_typing_reported(self, recipient_gl: str):
        output: MatchOutput = compute_match(
            MatchInput(recipient_gl=recipient_gl, donor_gl="HLA-DPB1*04:01")
        )
        assert len(output.errors) == 1
        assert output.match_grade is None

    def test_gl_service_failure_reported(self, mocker: MockerFixture):
        mock_response = mocker.MagicMock()
        mock_response.status_code = 503
        mocker.patch.object(requests, "get", return_value=mock_response)
        output: MatchOutput = compute_match(
            MatchInput(
                recipient_gl="https://gl.example.org/genotype-list/1",
                donor_gl="HLA-DPB1*04:01",
            )
        )
        assert len(output.errors) == 1
        assert "503" in output.errors[0]

    def test_gl_service_unreachable_reported(self, mocker: MockerFixture):
        mocker.patch.object(
            requests,
            "get",
            side_effect=requests.exceptions.ConnectionError("refused"),
        )
        output: MatchOutput = compute_match(
            MatchInput(
                recipient_gl="https://gl.example.org/genotype-list/1",
                donor_gl="HLA-DPB1*04:01",
            )
        )
        assert len(output.errors) == 1
        assert "refused" in output.errors[0]
        assert output.match_grade is None

    def test_config_path(self, tmp_path: Path):
        p = tmp_path / "dpb1.yaml"
        p.write_text("match_probability_precision: 0.1\n")
        output: MatchOutput = compute_match(
            MatchInput(
                recipient_gl="HLA-DPB1*04:01/HLA-DPB1*03:01+HLA-DPB1*04:01",
                recipient_race="EURCAU",
                donor_gl="HLA-DPB1*04:01",
                donor_race="EURCAU",
                config_path=str(p),
            )
        )
        for probability in (output.match_probability, output.gvh_probability):
            assert probability * 10 == pytest.approx(round(probability * 10))


def test_main(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture,
):
    infile = tmp_path / "input.json"
    infile.write_text(
        json.dumps(
            {
                "recipient_gl": "HLA-DPB1*04:01+HLA-DPB1*04:01",
                "recipient_race": "EURCAU",
                "donor_gl": "HLA-DPB1*02:01+HLA-DPB1*02:01",
                "donor_race": "EURCAU",
            }
        )
    )
    mocker.patch.object(sys, "argv", ["dpb1-match-from-json", str(infile)])
    main()
    output: dict = json.loads(capsys.readouterr().out)
    assert output["match_grade"] == "PERMISSIVE"
    assert output["permissive_probability"] == 1.0
    assert output["errors"] == []
