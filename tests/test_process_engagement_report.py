import duckdb
import pytest
from docx import Document

import process_engagement_report as script
from engagement_stages import REPORT_COLUMNS


@pytest.fixture
def workspace(tmp_path, scenario_frames):
    input_dir = tmp_path / 'input'
    input_dir.mkdir()
    for table, df in scenario_frames.items():
        df.to_csv(input_dir / f"{table}.csv", index=False)
    return tmp_path


def _run(workspace, **kwargs):
    return script.process_engagement_report(
        input_dir=workspace / 'input',
        data_dir=workspace / 'data',
        output_dir=workspace / 'output',
        **kwargs,
    )


def test_exports_report_and_leaderboard(workspace):
    report = _run(workspace)

    report_file = workspace / 'output' / 'engagement_report.parquet'
    exported = duckdb.sql(f"SELECT * FROM read_parquet('{report_file}')").df()
    assert list(exported.columns) == REPORT_COLUMNS
    assert len(exported) == len(report) == 3

    leaderboard_file = workspace / 'output' / 'country_leaderboard.parquet'
    countries = duckdb.sql(f"SELECT country FROM read_parquet('{leaderboard_file}')").fetchall()
    assert countries == [('DE',), ('IT',)]

    assert (workspace / 'data' / 'engagement.db').exists()


def test_rerun_produces_identical_parquet(workspace):
    _run(workspace, in_memory=True)
    report_file = workspace / 'output' / 'engagement_report.parquet'
    first = duckdb.sql(f"SELECT * FROM read_parquet('{report_file}')").fetchall()

    _run(workspace, in_memory=True)
    second = duckdb.sql(f"SELECT * FROM read_parquet('{report_file}')").fetchall()

    assert first == second
    assert not (workspace / 'data').exists()


def test_docx_leaderboard(workspace):
    _run(workspace, in_memory=True, write_docx=True)

    doc = Document(str(workspace / 'output' / 'country_leaderboard.docx'))
    table = doc.tables[0]
    assert [c.text for c in table.rows[0].cells] == [
        'Country', 'Accounts', 'Sent messages', 'Rank (accounts)', 'Rank (sent)',
    ]
    assert [c.text for c in table.rows[1].cells] == ['DE', '1', '2', '1', '1']
    assert table.rows[0].cells[0].paragraphs[0].runs[0].bold


def test_missing_input_folder(tmp_path):
    with pytest.raises(script.SourceDataError):
        script.process_engagement_report(input_dir=tmp_path / 'nope', in_memory=True,
                                         output_dir=tmp_path / 'output')


def test_main_reports_errors(tmp_path, capsys):
    assert script.main([str(tmp_path / 'nope'), '--in-memory']) == 1
    assert 'ERROR: Input folder not found' in capsys.readouterr().out


@pytest.mark.parametrize('value', ['0', '-3', 'ten'])
def test_main_rejects_bad_top_n(tmp_path, capsys, value):
    assert script.main([str(tmp_path), f'--top-n={value}']) == 1
    assert '--top-n must be a positive integer' in capsys.readouterr().out


def test_main_runs_with_top_n(workspace, monkeypatch):
    monkeypatch.setattr(script, 'SCRIPT_DIR', workspace)
    assert script.main([str(workspace / 'input'), '--top-n=1', '--in-memory']) == 0

    report_file = workspace / 'output' / 'engagement_report.parquet'
    countries = duckdb.sql(
        f"SELECT DISTINCT country FROM read_parquet('{report_file}') ORDER BY country"
    ).fetchall()
    # IT ties DE on accounts, so it shares account rank 1
    assert countries == [('DE',), ('IT',)]


def test_paths_with_single_quote(tmp_path, scenario_frames):
    base = tmp_path / "owner's reports"
    input_dir = base / 'input'
    input_dir.mkdir(parents=True)
    for table, df in scenario_frames.items():
        df.to_csv(input_dir / f"{table}.csv", index=False)

    report = script.process_engagement_report(
        input_dir=input_dir, output_dir=base / 'output', in_memory=True,
    )

    assert len(report) == 3
    assert (base / 'output' / 'engagement_report.parquet').exists()
    assert (base / 'output' / 'country_leaderboard.parquet').exists()
