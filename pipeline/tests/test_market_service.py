"""
Tests for the fund market service.
Routes every upstream URL to canned payloads; no network access.
"""

import asyncio
import json
import pytest
from pathlib import Path

from errors import InvalidParams, InsufficientData, UpstreamFormatError, UpstreamHttpError, UpstreamTimeout
from ingestion.providers import eastmoney_adapter as eastmoney
from pipeline.market_service import FundMarketService

FIXTURES = Path(__file__).parent.parent.parent / 'tests' / 'fixtures'

PINGZHONG_JS = (FIXTURES / 'pingzhong_110011.js').read_text(encoding='utf-8')

ESTIMATE_ROUTE = 'fundgz.1234567.com.cn/js/110011.js'

ESTIMATE_JSONP = (
    'jsonpgz({"fundcode":"110011","name":"易方达中小盘混合","jzrq":"2024-01-09",'
    '"dwjz":"1.0300","gsz":"1.0412","gszzl":"1.09","gztime":"2024-01-10 15:00"});'
)

F10_HTML = """
<html><body>
<table class="info w790">
  <tr><th>基金全称</th><td>易方达中小盘混合型证券投资基金</td><th>基金简称</th><td>易方达中小盘混合</td></tr>
  <tr><th>基金类型</th><td>混合型-偏股</td><th>发行日期</th><td>2008年05月19日</td></tr>
  <tr><th>成立日期/规模</th><td>2008年06月19日 / 17.519亿份</td><th>基金管理人</th><td><a href="#">易方达基金</a></td></tr>
  <tr><th>业绩比较基准</th><td>沪深300指数收益率×80%+中债总指数收益率×20%</td></tr>
</table>
</body></html>
"""

INDUSTRY_JSON = json.dumps({
    'Data': {'QuarterInfos': [
        {'JZRQ': '2024-06-30', 'HYPZInfo': [
            {'HYMC': '金融业', 'ZJZBL': '20.1', 'FSRQ': '2024-06-30'},
            {'HYMC': '信息技术', 'ZJZBL': '--', 'ZJZBLDesc': '5.5%'},
            {'HYMC': '制造业', 'ZJZBL': '60.5', 'FSRQ': '2024-06-30'},
        ]},
        {'JZRQ': '2024-03-31', 'HYPZInfo': [{'HYMC': '制造业', 'ZJZBL': '58.0'}]},
    ]},
    'ErrCode': 0,
    'ErrMsg': None,
}, ensure_ascii=False)


def holdings_table(as_of, rows):
    body = ''.join(
        f'<tr><td>{i + 1}</td><td><a>{code}</a></td><td><a>{name}</a></td>'
        f'<td>{weight}%</td><td>{shares}</td><td>{value}</td></tr>'
        for i, (code, name, weight, shares, value) in enumerate(rows)
    )
    return (
        f'<div class="box"><h4 class="t"><label class="right lab2 xq505">截止至：'
        f'<font class="px12">{as_of}</font></label></h4>'
        '<table class="w782 comm tzxq"><thead><tr><th>序号</th><th>股票代码</th><th>股票名称</th>'
        '<th>占净值<br/>比例</th><th>持股数<br/>（万股）</th><th>持仓市值<br/>（万元）</th></tr></thead>'
        f'<tbody>{body}</tbody></table></div>'
    )


def apidata(html):
    return 'var apidata={ content:' + json.dumps(html) + ',arryear:[2024,2023],curyear:2024};'


Q2_TABLE = holdings_table('2024-06-30', [
    ('600519', '贵州茅台', '9.12', '123.45', '1,234.56'),
    ('000858', '五粮液', '7.50', '80.00', '987.00'),
    ('300750', '宁德时代', '5.00', '50.00', '600.00'),
])
Q1_TABLE = holdings_table('2024-03-31', [
    ('600519', '贵州茅台', '8.00', '120.00', '1,100.00'),
    ('000001', '平安银行', '6.00', '300.00', '700.00'),
])


class FakeUpstream:
    """Async ``fetch_text`` stand-in routing URLs by substring."""

    def __init__(self, routes):
        self.routes = dict(routes)
        self.calls = []

    async def __call__(self, url, timeout_ms=None, headers=None):
        self.calls.append(url)
        for fragment, response in self.routes.items():
            if fragment in url:
                if isinstance(response, Exception):
                    raise response
                return response
        raise UpstreamHttpError(f"HTTP 404 for {url}", status=404, body='not found')

    def count(self, fragment):
        return sum(1 for url in self.calls if fragment in url)


def default_routes():
    return {
        'pingzhongdata/110011.js': PINGZHONG_JS,
        ESTIMATE_ROUTE: ESTIMATE_JSONP,
        'jbgk_110011': F10_HTML,
        'HYPZ': INDUSTRY_JSON,
        'year=2024&month=3&': apidata(Q1_TABLE),
        'FundArchivesDatas': apidata(Q2_TABLE + Q1_TABLE),
    }


@pytest.fixture
def upstream():
    return FakeUpstream(default_routes())


@pytest.fixture
def service(upstream):
    return FundMarketService(fetcher=upstream)


class TestQuote:
    """Tests for get_quote."""

    def test_quote_with_estimate(self, service):
        quote = asyncio.run(service.get_quote('110011'))

        assert quote['fund_code'] == '110011'
        assert quote['nav'] == 1.03
        assert quote['nav_date'] == '2024-01-09'
        assert quote['change'] == -0.0104
        assert quote['change_percent'] == -1.0
        assert quote['estimated_nav'] == 1.0412
        assert quote['estimated_change_percent'] == 1.09
        assert quote['estimate_time'] == '2024-01-10 15:00'
        assert quote['source'] == eastmoney.SOURCE_QUOTE
        assert quote['updated_at']

    def test_estimate_failure_degrades(self, upstream, service):
        upstream.routes[ESTIMATE_ROUTE] = UpstreamTimeout('estimate timed out')

        quote = asyncio.run(service.get_quote('110011'))

        assert quote['nav'] == 1.03
        assert 'estimated_nav' not in quote
        assert 'estimate_time' not in quote
        assert quote['source'] == eastmoney.SOURCE_PINGZHONG

    def test_malformed_estimate_degrades(self, upstream, service):
        upstream.routes[ESTIMATE_ROUTE] = 'jsonpgz();'

        quote = asyncio.run(service.get_quote('110011'))

        assert 'estimated_nav' not in quote

    def test_invalid_code_fails_before_io(self, upstream, service):
        with pytest.raises(InvalidParams):
            asyncio.run(service.get_quote('11001'))
        assert upstream.calls == []

    def test_missing_nav_trend(self, upstream, service):
        upstream.routes['pingzhongdata/110011.js'] = 'var fS_name = "x";var fS_code = "110011";'

        with pytest.raises(UpstreamFormatError, match="Data_netWorthTrend"):
            asyncio.run(service.get_quote('110011'))

    def test_quote_is_cached(self, upstream, service):
        first = asyncio.run(service.get_quote('110011'))
        second = asyncio.run(service.get_quote('110011'))

        assert first == second
        assert upstream.count('pingzhongdata') == 1
        assert upstream.count('fundgz') == 1

    def test_force_refetches_upstream(self, upstream, service):
        asyncio.run(service.get_quote('110011'))
        asyncio.run(service.get_quote('110011', force=True))

        assert upstream.count('pingzhongdata') == 2
        assert upstream.count('fundgz') == 2


class TestNavHistory:
    """Tests for get_nav_history."""

    def test_default_range(self, service):
        history = asyncio.run(service.get_nav_history('110011'))

        assert history['range'] == '30d'
        points = history['points']
        assert [p['date'] for p in points] == [
            '2024-01-02', '2024-01-03', '2024-01-04', '2024-01-05', '2024-01-08', '2024-01-09'
        ]
        assert points[2] == {'date': '2024-01-04', 'nav': 0.969, 'return_pct': -5.0, 'cumulative_pct': -3.1}

    def test_end_date(self, service):
        history = asyncio.run(service.get_nav_history('110011', '1y', end_date='2024-01-05'))

        assert history['points'][-1]['date'] == '2024-01-05'
        assert len(history['points']) == 4

    def test_invalid_end_date(self, upstream, service):
        with pytest.raises(InvalidParams, match="Invalid date"):
            asyncio.run(service.get_nav_history('110011', end_date='2024/01/05'))
        assert upstream.calls == []

    def test_window_before_first_point(self, service):
        with pytest.raises(InsufficientData):
            asyncio.run(service.get_nav_history('110011', end_date='2023-06-01'))


class TestBasicInfo:
    """Tests for get_basic_info."""

    def test_with_profile(self, service):
        info = asyncio.run(service.get_basic_info('110011'))

        assert info == {
            'fund_code': '110011',
            'name': '易方达中小盘混合',
            'type': '混合型-偏股',
            'inception_date': '2008-06-19',
            'company': '易方达基金',
            'risk_level': '中高',
            'tags': ['沪深300指数收益率×80%+中债总指数收益率×20%', '易方达中小盘混合型证券投资基金'],
        }

    def test_profile_unavailable_infers_labels(self, upstream, service):
        del upstream.routes['jbgk_110011']

        info = asyncio.run(service.get_basic_info('110011'))

        assert info == {
            'fund_code': '110011',
            'name': '易方达中小盘混合',
            'type': '混合型',
            'risk_level': '中高',
        }


class TestIndustryAndAllocation:
    """Tests for industry config, asset allocation and grand total."""

    def test_industry_config(self, service):
        result = asyncio.run(service.get_industry_config('110011'))

        assert result['as_of_date'] == '2024-06-30'
        assert result['industries'] == [
            {'name': '制造业', 'pct': 60.5},
            {'name': '金融业', 'pct': 20.1},
            {'name': '信息技术', 'pct': 5.5},
        ]
        assert result['source'] == eastmoney.SOURCE_INDUSTRY

    def test_industry_error_code(self, upstream, service):
        upstream.routes['HYPZ'] = json.dumps({'ErrCode': 1, 'ErrMsg': 'busy', 'Data': None})

        with pytest.raises(UpstreamFormatError, match="busy"):
            asyncio.run(service.get_industry_config('110011'))

    def test_asset_allocation(self, service):
        result = asyncio.run(service.get_asset_allocation('110011'))

        assert result['as_of_date'] == '2023-12-31'
        assert result['quarters'][0] == {
            'date': '2023-09-30', 'stock_pct': 85.12, 'bond_pct': 2.5, 'cash_pct': 10.2, 'other_pct': 2.18,
        }
        assert result['quarters'][1]['other_pct'] == 0.8

    def test_grand_total(self, service):
        result = asyncio.run(service.get_grand_total('110011'))

        assert [s['name'] for s in result['series']] == ['易方达中小盘混合', '同类平均', '沪深300']
        assert result['start_date'] == '2024-01-02'
        assert result['end_date'] == '2024-01-09'

    def test_similar_ranking(self, service):
        result = asyncio.run(service.get_similar_ranking('110011'))

        assert result['as_of_date'] == '2024-01-09'
        assert result['rank'] == 100
        assert result['total'] == 1000
        assert result['percentile'] == 90.0

    def test_similar_ranking_missing_literals(self, upstream, service):
        upstream.routes['pingzhongdata/110011.js'] = PINGZHONG_JS.replace(
            'var Data_rateInSimilarType', 'var Data_unused'
        )

        result = asyncio.run(service.get_similar_ranking('110011'))

        assert result['rank'] is None
        assert result['total'] is None
        assert result['percentile'] == 90.0


class TestTopHoldings:
    """Tests for top holdings and the quarter comparison."""

    def test_latest_quarter(self, service):
        snapshot = asyncio.run(service.get_top_holdings('110011'))

        assert snapshot['as_of_date'] == '2024-06-30'
        assert [h['stock_code'] for h in snapshot['holdings']] == ['600519', '000858', '300750']
        assert snapshot['holdings'][0]['market_value_wan'] == 1234.56

    def test_topline_limits_rows(self, service):
        snapshot = asyncio.run(service.get_top_holdings('110011', topline=2))
        assert len(snapshot['holdings']) == 2

    def test_requested_quarter(self, service):
        snapshot = asyncio.run(service.get_top_holdings('110011', year=2024, month=3))
        assert snapshot['as_of_date'] == '2024-03-31'

    @pytest.mark.parametrize('kwargs', [
        {'topline': 0},
        {'topline': 51},
        {'topline': '10'},
        {'year': 2024},
        {'year': 2024, 'month': 13},
    ])
    def test_invalid_params_before_io(self, upstream, service, kwargs):
        with pytest.raises(InvalidParams):
            asyncio.run(service.get_top_holdings('110011', **kwargs))
        assert upstream.calls == []

    def test_comparison(self, service):
        result = asyncio.run(service.get_top_holdings_comparison('110011'))

        assert result['current']['as_of_date'] == '2024-06-30'
        assert result['previous']['as_of_date'] == '2024-03-31'
        changes = result['changes']
        assert [i['stock_code'] for i in changes['added']] == ['000858', '300750']
        assert [i['stock_code'] for i in changes['removed']] == ['000001']
        assert changes['changed'][0]['stock_code'] == '600519'
        assert changes['changed'][0]['delta_weight_pct'] == 1.12
        assert result['source'] == eastmoney.SOURCE_HOLDINGS_COMPARE

    def test_comparison_previous_unavailable(self, upstream, service):
        upstream.routes['year=2024&month=3&'] = UpstreamTimeout('slow')

        result = asyncio.run(service.get_top_holdings_comparison('110011'))

        assert result['previous'] == {'as_of_date': None, 'holdings': []}
        assert len(result['changes']['added']) == 3
        assert result['changes']['removed'] == []

    def test_comparison_upstream_falls_back_to_current(self, upstream, service):
        upstream.routes['year=2024&month=3&'] = apidata(Q2_TABLE)

        result = asyncio.run(service.get_top_holdings_comparison('110011'))

        assert result['previous'] == {'as_of_date': None, 'holdings': []}


class TestAnalysis:
    """Tests for get_analysis."""

    def test_analysis(self, service):
        result = asyncio.run(service.get_analysis('110011'))

        assert result['horizon'] == '1y'
        metrics = result['metrics']
        assert metrics['max_drawdown_pct'] == -5.0
        assert metrics['max_drawdown_recovery_days'] == 4
        assert metrics['year_return_pct'] == 3.0
        assert metrics['similar_rank'] == 100
        assert metrics['similar_percentile'] == 90.0
        assert result['series']['benchmark_cumulative_pct'] == [0.0, 1.0, -1.0, 0.5, 2.0, 1.5]

    def test_unknown_horizon_reads_as_1y(self, service):
        assert asyncio.run(service.get_analysis('110011', 'forever'))['horizon'] == '1y'

    def test_analysis_without_optional_sources(self, upstream, service):
        js = PINGZHONG_JS
        for name in ('Data_grandTotal', 'Data_rateInSimilarType', 'Data_rateInSimilarPersent'):
            js = js.replace(f'var {name}', f'var Unused_{name}')
        upstream.routes['pingzhongdata/110011.js'] = js

        result = asyncio.run(service.get_analysis('110011'))

        assert result['metrics']['similar_rank'] is None
        assert result['series']['benchmark_cumulative_pct'] == [None] * 6

    def test_concurrent_queries_share_one_fetch(self, upstream, service):
        async def scenario():
            return await asyncio.gather(
                service.get_quote('110011'),
                service.get_nav_history('110011', '90d'),
                service.get_analysis('110011', 'since'),
                service.get_asset_allocation('110011'),
            )

        asyncio.run(scenario())

        assert upstream.count('pingzhongdata') == 1

    def test_forced_analysis_fetches_data_file_once(self, upstream, service):
        asyncio.run(service.get_analysis('110011', force=True))
        assert upstream.count('pingzhongdata') == 1

        result = asyncio.run(service.get_analysis('110011', force=True))

        assert upstream.count('pingzhongdata') == 2
        assert result['metrics']['similar_rank'] == 100
