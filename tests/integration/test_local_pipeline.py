"""
Integration tests for the local backend
Runs complete jobs from ASA CSV input to published part files
"""

import glob
import json
import os

import pandas as pd
import pytest

from enroute_mr import BackendConfig, StageError, run
from enroute_mr.client import client
from enroute_mr.client.client import main
from enroute_mr.common.mapreduce import Reducer
from enroute_mr.jobs.enroute_time import (
    AsaCsvInputFormat,
    EnrouteTimeMapper,
    EnrouteTimeOutputFormat,
    EnrouteTimeReducer,
)

HEADER = 'year,market,flights,scheduled,actual,in_air'

SAMPLE_ROWS = [
    '2004,BOS-ORD,2,145.0,160.0,120.0',
    '2004,JFK-LAX,2,330.0,340.0,295.0',
    '2004,SEA-SFO,1,120.0,NA,NA',
    '2005,JFK-LAX,1,335.0,350.0,310.0',
]


class FailingReducer(Reducer):
    def reduce(self, key, values):
        raise ZeroDivisionError(f"cannot reduce {key.market}")


def run_enroute(input_location, output_location, reducer=None, **config):
    return run(
        input_location,
        output_location,
        mapper=EnrouteTimeMapper(),
        reducer=reducer or EnrouteTimeReducer(),
        input_format=AsaCsvInputFormat(),
        output_format=EnrouteTimeOutputFormat(),
        backend_config=BackendConfig(**config),
    )


def read_rows(output_location):
    """Data rows of every part file, header lines dropped"""
    rows = []
    for path in sorted(glob.glob(os.path.join(output_location, 'part-*'))):
        with open(path) as f:
            lines = f.read().splitlines()
        assert lines[0] == HEADER
        rows.extend(lines[1:])
    return rows


@pytest.fixture
def output_location(temp_dir):
    return os.path.join(temp_dir, 'out', 'airline')


class TestLocalPipeline:
    """End-to-end runs on the local backend"""

    def test_single_market_scenario(self, scenario_input_file, output_location):
        handle = run_enroute(scenario_input_file, output_location)

        assert read_rows(output_location) == ['2004,JFK-LAX,2,330.0,340.0,295.0']
        assert handle.backend == 'local'
        assert handle.status == 'completed'
        assert handle.output_files == [os.path.join(output_location, 'part-00000.csv')]
        assert os.path.exists(os.path.join(output_location, '_SUCCESS'))

    def test_header_and_cancelled_rows_have_no_effect(self, temp_dir, make_line, header_line, write_csv):
        with_noise = write_csv(os.path.join(temp_dir, 'noisy.csv'), [
            header_line,
            make_line(Origin='JFK', Dest='LAX', ActualElapsedTime=345, AirTime=300),
            make_line(Origin='JFK', Dest='LAX', ActualElapsedTime=999, AirTime=999, Cancelled=1),
            header_line,
        ])
        clean = write_csv(os.path.join(temp_dir, 'clean.csv'), [
            make_line(Origin='JFK', Dest='LAX', ActualElapsedTime=345, AirTime=300),
        ])

        run_enroute(with_noise, os.path.join(temp_dir, 'noisy-out'))
        run_enroute(clean, os.path.join(temp_dir, 'clean-out'))

        assert read_rows(os.path.join(temp_dir, 'noisy-out')) == read_rows(os.path.join(temp_dir, 'clean-out'))

    def test_one_row_per_distinct_key(self, sample_input_file, output_location):
        handle = run_enroute(sample_input_file, output_location)

        assert read_rows(output_location) == SAMPLE_ROWS
        assert handle.metrics.keys_reduced == len(SAMPLE_ROWS)
        assert handle.metrics.rows_written == len(SAMPLE_ROWS)

    def test_metrics_count_skipped_and_filtered_lines(self, sample_input_file, output_location):
        metrics = run_enroute(sample_input_file, output_location).metrics

        assert metrics.lines_read == 11
        assert metrics.lines_skipped == 2
        assert metrics.records_filtered == 3
        assert metrics.pairs_emitted == 6
        assert metrics.pairs_shuffled == 6
        assert metrics.input_size_bytes == os.path.getsize(sample_input_file)
        assert metrics.total_time_seconds >= 0

    def test_directory_input(self, temp_dir, sample_lines, output_location, write_csv):
        input_dir = os.path.join(temp_dir, 'airline')
        os.makedirs(input_dir)
        write_csv(os.path.join(input_dir, '2004-a.csv'), sample_lines[:5])
        write_csv(os.path.join(input_dir, '2004-b.csv'), sample_lines[:1] + sample_lines[5:])
        write_csv(os.path.join(input_dir, '.2004-b.csv.crc'), ['not, a, flight'])

        run_enroute(input_dir, output_location)

        assert read_rows(output_location) == SAMPLE_ROWS

    @pytest.mark.parametrize('num_map_tasks,num_reduce_tasks', [(1, 3), (4, 1), (5, 4)])
    def test_task_counts_do_not_change_results(self, sample_input_file, output_location,
                                               num_map_tasks, num_reduce_tasks):
        handle = run_enroute(sample_input_file, output_location,
                             num_map_tasks=num_map_tasks, num_reduce_tasks=num_reduce_tasks)

        assert sorted(read_rows(output_location)) == SAMPLE_ROWS
        assert len(handle.output_files) == num_reduce_tasks
        assert [os.path.basename(f) for f in handle.output_files] == [
            f'part-{i:05d}.csv' for i in range(num_reduce_tasks)
        ]

    def test_small_batches_do_not_change_results(self, sample_input_file, output_location):
        run_enroute(sample_input_file, output_location, batch_size=1)

        assert read_rows(output_location) == SAMPLE_ROWS

    def test_to_dataframe_marks_missing_means(self, sample_input_file, output_location):
        df = run_enroute(sample_input_file, output_location, num_reduce_tasks=2).to_dataframe()

        assert list(df.columns) == HEADER.split(',')
        assert list(df['market']) == ['BOS-ORD', 'JFK-LAX', 'SEA-SFO', 'JFK-LAX']
        sea_sfo = df[df['market'] == 'SEA-SFO'].iloc[0]
        assert sea_sfo['scheduled'] == 120.0
        assert pd.isna(sea_sfo['actual'])
        assert pd.isna(sea_sfo['in_air'])


class TestLocalPipelineFailures:
    """A failed stage raises StageError and publishes nothing"""

    def leftovers(self, output_location):
        return glob.glob(output_location + '*')

    def test_reducer_failure(self, sample_input_file, output_location):
        with pytest.raises(StageError) as exc_info:
            run_enroute(sample_input_file, output_location, reducer=FailingReducer())

        assert exc_info.value.stage == 'reduce'
        assert 'cannot reduce' in str(exc_info.value)
        assert self.leftovers(output_location) == []

    def test_missing_input(self, temp_dir, output_location):
        with pytest.raises(StageError) as exc_info:
            run_enroute(os.path.join(temp_dir, 'no-such-input'), output_location)

        assert exc_info.value.stage == 'input'
        assert self.leftovers(output_location) == []

    def test_existing_output_is_not_overwritten(self, sample_input_file, output_location):
        os.makedirs(output_location)
        marker = os.path.join(output_location, 'keep.txt')
        with open(marker, 'w') as f:
            f.write('previous run')

        with pytest.raises(StageError) as exc_info:
            run_enroute(sample_input_file, output_location)

        assert exc_info.value.stage == 'output'
        assert os.listdir(output_location) == ['keep.txt']

    def test_invalid_config(self, sample_input_file, output_location):
        config = BackendConfig()
        # Frozen dataclass; bypass __post_init__ validation to simulate a bad config
        object.__setattr__(config, 'num_reduce_tasks', 0)

        with pytest.raises(StageError) as exc_info:
            run(sample_input_file, output_location, EnrouteTimeMapper(), EnrouteTimeReducer(),
                AsaCsvInputFormat(), EnrouteTimeOutputFormat(), backend_config=config)

        assert exc_info.value.stage == 'config'

    def test_wrong_component_type(self, sample_input_file, output_location):
        with pytest.raises(StageError) as exc_info:
            run(sample_input_file, output_location, lambda record: None, EnrouteTimeReducer(),
                AsaCsvInputFormat(), EnrouteTimeOutputFormat())

        assert exc_info.value.stage == 'config'
        assert 'mapper' in str(exc_info.value)


class TestClientCommands:
    """The enroute-mr command line client"""

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for name in ('ENROUTE_BACKEND', 'ENROUTE_WORKERS', 'ENROUTE_REDUCE_TASKS',
                     'ENROUTE_MAP_TASKS', 'ENROUTE_SCRATCH_DIR'):
            monkeypatch.delenv(name, raising=False)

    def test_run_prints_summary_and_preview(self, sample_input_file, output_location, temp_dir, capsys):
        metrics_file = os.path.join(temp_dir, 'metrics.json')

        exit_code = main(['run', '--input', sample_input_file, '--output', output_location,
                          '--num-reduce-tasks', '2', '--metrics-file', metrics_file])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert '✓ Job' in out
        assert 'BOS-ORD' in out
        assert sorted(read_rows(output_location)) == SAMPLE_ROWS
        with open(metrics_file) as f:
            assert json.load(f)['keys_reduced'] == 4

    def test_backend_flag_overrides_incomplete_environment(self, sample_input_file, output_location,
                                                           monkeypatch, capsys):
        monkeypatch.setenv('ENROUTE_BACKEND', 'distributed')

        exit_code = main(['run', '--input', sample_input_file, '--output', output_location,
                          '--backend', 'local', '--preview', '0'])

        assert exit_code == 0
        assert 'on local backend' in capsys.readouterr().out
        assert sorted(read_rows(output_location)) == SAMPLE_ROWS

    def test_distributed_environment_without_workers_fails(self, sample_input_file, output_location,
                                                           monkeypatch, capsys):
        monkeypatch.setenv('ENROUTE_BACKEND', 'distributed')

        exit_code = main(['run', '--input', sample_input_file, '--output', output_location])

        assert exit_code == 1
        assert 'worker address' in capsys.readouterr().out
        assert not os.path.exists(output_location)

    def test_worker_ignores_backend_environment(self, temp_dir, monkeypatch):
        monkeypatch.setenv('ENROUTE_BACKEND', 'distributed')
        monkeypatch.setenv('ENROUTE_REDUCE_TASKS', 'two')
        monkeypatch.setenv('ENROUTE_SCRATCH_DIR', temp_dir)
        started = {}
        monkeypatch.setattr(client, 'serve', lambda **kwargs: started.update(kwargs))

        assert main(['worker', '--port', '0', '--worker-id', 'w1']) == 0
        assert started == {'port': 0, 'scratch_dir': temp_dir, 'max_workers': 4, 'worker_id': 'w1'}

    def test_run_failure_returns_error_code(self, temp_dir, output_location, capsys):
        exit_code = main(['run', '--input', os.path.join(temp_dir, 'missing'), '--output', output_location])

        assert exit_code == 1
        assert 'input stage failed' in capsys.readouterr().out

    def test_run_unknown_job_returns_error_code(self, sample_input_file, output_location, capsys):
        exit_code = main(['run', '--input', sample_input_file, '--output', output_location,
                          '--job', 'enroute_mr.jobs.no_such_job'])

        assert exit_code == 1
        assert 'Error loading job' in capsys.readouterr().out

    def test_show_previews_rows(self, sample_input_file, output_location, capsys):
        run_enroute(sample_input_file, output_location)

        exit_code = main(['show', output_location, '--rows', '2'])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert '4 rows' in out
        assert 'BOS-ORD' in out
        assert 'SEA-SFO' not in out

    def test_show_without_output_fails(self, temp_dir, capsys):
        assert main(['show', temp_dir]) == 1
        assert 'No part files' in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert 'usage' in capsys.readouterr().out
