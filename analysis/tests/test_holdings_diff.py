"""
Tests for holdings comparison utilities.
"""

import pytest

from analysis.calculations.holdings_diff import (
    quarter_month,
    quarter_end_from_year_month,
    previous_quarter,
    compare_holdings,
    empty_snapshot,
    HoldingsDiffError,
)


def holding(code, weight, name=None):
    return {'stock_code': code, 'stock_name': name or f'Stock {code}', 'weight_pct': weight}


class TestQuarters:
    """Tests for quarter stepping."""

    @pytest.mark.parametrize('month,expected', [(1, 3), (3, 3), (4, 6), (8, 9), (10, 12), (12, 12)])
    def test_quarter_month(self, month, expected):
        assert quarter_month(month) == expected

    @pytest.mark.parametrize('year,month,expected', [
        (2024, 5, '2024-06-30'),
        (2024, 1, '2024-03-31'),
        (2024, 9, '2024-09-30'),
        (2023, 11, '2023-12-31'),
    ])
    def test_quarter_end(self, year, month, expected):
        assert quarter_end_from_year_month(year, month) == expected

    @pytest.mark.parametrize('as_of,expected', [
        ('2024-06-30', (2024, 3)),
        ('2024-12-31', (2024, 9)),
        ('2024-03-31', (2023, 12)),
        ('2024-02-15', (2023, 12)),
    ])
    def test_previous_quarter(self, as_of, expected):
        assert previous_quarter(as_of) == expected

    @pytest.mark.parametrize('bad', ['', None, '2024/06/30', '2024-13-31'])
    def test_previous_quarter_invalid(self, bad):
        with pytest.raises(HoldingsDiffError):
            previous_quarter(bad)


class TestCompareHoldings:
    """Tests for compare_holdings."""

    def test_added_removed_changed(self):
        previous = [holding('A', 5.0), holding('B', 3.0)]
        current = [holding('B', 4.0), holding('C', 2.0)]

        diff = compare_holdings(current, previous)

        assert diff['added'] == [{
            'stock_code': 'C', 'stock_name': 'Stock C',
            'prev_weight_pct': None, 'curr_weight_pct': 2.0, 'delta_weight_pct': None,
        }]
        assert diff['removed'] == [{
            'stock_code': 'A', 'stock_name': 'Stock A',
            'prev_weight_pct': 5.0, 'curr_weight_pct': None, 'delta_weight_pct': None,
        }]
        assert diff['changed'] == [{
            'stock_code': 'B', 'stock_name': 'Stock B',
            'prev_weight_pct': 3.0, 'curr_weight_pct': 4.0, 'delta_weight_pct': 1.0,
        }]

    def test_sort_orders(self):
        previous = [holding('R1', 1.0), holding('R2', 6.0), holding('X', 5.0), holding('Y', 5.0)]
        current = [holding('N1', 2.0), holding('N2', 7.5), holding('X', 5.5), holding('Y', 2.0)]

        diff = compare_holdings(current, previous)

        assert [i['stock_code'] for i in diff['added']] == ['N2', 'N1']
        assert [i['stock_code'] for i in diff['removed']] == ['R2', 'R1']
        # Largest absolute move first, regardless of sign
        assert [i['stock_code'] for i in diff['changed']] == ['Y', 'X']
        assert diff['changed'][0]['delta_weight_pct'] == -3.0

    def test_delta_is_rounded(self):
        diff = compare_holdings([holding('A', 3.3)], [holding('A', 1.1)])
        assert diff['changed'][0]['delta_weight_pct'] == 2.2

    def test_empty_previous(self):
        diff = compare_holdings([holding('A', 1.0)], [])
        assert len(diff['added']) == 1
        assert diff['removed'] == []
        assert diff['changed'] == []

    def test_rows_without_code_are_ignored(self):
        diff = compare_holdings([holding('', 9.0)], [])
        assert diff == {'added': [], 'removed': [], 'changed': []}


def test_empty_snapshot():
    assert empty_snapshot() == {'as_of_date': None, 'holdings': []}
    assert empty_snapshot('2024-03-31')['as_of_date'] == '2024-03-31'
