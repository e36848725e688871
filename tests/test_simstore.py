"""Tests for on-disk draw storage."""

import h5py
import numpy as np
import pytest

from dsge_estimation.simstore import STORAGE_DTYPE, BlockBuffer, SimStore, load_draws


def _filled_buffer(n_sim, n_params=3, n_states=2, n_shocks=1, offset=0.0):
    buffer = BlockBuffer(n_sim, n_params, n_states, n_shocks)
    for name, array in buffer.arrays.items():
        array[:] = offset + np.arange(array.size).reshape(array.shape) / 3.0
    return buffer


class TestSimStore:

    def test_layout(self, tmp_path):
        path = str(tmp_path / 'draws' / 'sim_save.h5')
        with SimStore.create(path, n_saved=6, n_sim=3, n_params=3, n_states=2, n_shocks=1):
            pass

        with h5py.File(path, 'r') as f:
            assert set(f.keys()) == set(SimStore.DATASETS)
            assert f['parasim'].shape == (6, 3)
            assert f['postsim'].shape == (6, 1)
            assert f['TTTsim'].shape == (6, 4)
            assert f['RRRsim'].shape == (6, 2)
            assert f['CCCsim'].shape == (6, 2)
            assert f['zsim'].shape == (6, 2)
            for name in SimStore.DATASETS:
                assert f[name].dtype == STORAGE_DTYPE
                assert f[name].chunks[0] == 3

    def test_blocks_written_to_row_ranges(self, tmp_path):
        path = str(tmp_path / 'sim_save.h5')
        first, second = _filled_buffer(3), _filled_buffer(3, offset=100.0)

        with SimStore.create(path, 6, 3, 3, 2, 1) as store:
            store.write_block(3, second)
            store.write_block(0, first)
            assert store.rows_written == 6

        draws = load_draws(path, keys=SimStore.DATASETS)
        for name in SimStore.DATASETS:
            np.testing.assert_array_equal(draws[name][:3], first[name].astype(np.float32))
            np.testing.assert_array_equal(draws[name][3:], second[name].astype(np.float32))

    def test_values_rounded_to_single_precision(self, tmp_path):
        path = str(tmp_path / 'sim_save.h5')
        buffer = BlockBuffer(1, 1, 1, 1)
        buffer['parasim'][0, 0] = 0.1

        with SimStore.create(path, 1, 1, 1, 1, 1) as store:
            store.write_block(0, buffer)

        stored = load_draws(path, keys=('parasim',))['parasim']
        assert stored.dtype == np.float32
        assert stored[0, 0] == np.float32(0.1)
        assert float(stored[0, 0]) != 0.1

    def test_partial_block_rejected(self, tmp_path):
        """A buffer with the wrong number of rows writes nothing."""
        path = str(tmp_path / 'sim_save.h5')
        with SimStore.create(path, 4, 2, 3, 2, 1) as store:
            with pytest.raises(ValueError, match="Partial block"):
                store.write_block(0, _filled_buffer(1))
            assert store.rows_written == 0

        draws = load_draws(path, keys=SimStore.DATASETS)
        for name in SimStore.DATASETS:
            assert not np.any(draws[name])

    def test_out_of_range_block(self, tmp_path):
        path = str(tmp_path / 'sim_save.h5')
        with SimStore.create(path, 4, 2, 3, 2, 1) as store:
            with pytest.raises(ValueError, match="outside store"):
                store.write_block(3, _filled_buffer(2))
            with pytest.raises(ValueError):
                store.write_block(-2, _filled_buffer(2))

    def test_size_must_be_whole_blocks(self, tmp_path):
        with pytest.raises(ValueError, match="multiple"):
            SimStore.create(str(tmp_path / 'sim_save.h5'), 5, 2, 3, 2, 1)

    def test_existing_file_replaced(self, tmp_path):
        path = str(tmp_path / 'sim_save.h5')
        with SimStore.create(path, 4, 2, 3, 2, 1) as store:
            store.write_block(0, _filled_buffer(2, offset=5.0))
        with SimStore.create(path, 2, 2, 3, 2, 1):
            pass

        draws = load_draws(path)
        assert draws['parasim'].shape == (2, 3)
        assert not np.any(draws['parasim'])


class TestLoadDraws:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_draws(str(tmp_path / 'missing.h5'))
