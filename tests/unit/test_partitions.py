"""Tests for bucketkeeper.core.partitions module."""

from __future__ import annotations

from datetime import date

import pytest

from bucketkeeper.core.partitions import PartitionFilter
from bucketkeeper.errors import InvalidArgumentError


class TestPartitionFilterParse:
    @pytest.mark.parametrize("text", [None, "", "   ", ";", " ; "])
    def test_blank_means_no_filter(self, text):
        assert PartitionFilter.parse(text) is None

    def test_single_partition(self):
        pf = PartitionFilter.parse("dt=2024-01-01")
        assert pf.groups == ((("dt", "2024-01-01"),),)

    def test_or_of_partitions(self):
        pf = PartitionFilter.parse("p1=a;p2=b")
        assert pf.groups == ((("p1", "a"),), (("p2", "b"),))

    @pytest.mark.parametrize("text", ["p1=a,p2=b", "p1=a/p2=b", " p1 = a , p2 = b "])
    def test_and_within_partition(self, text):
        pf = PartitionFilter.parse(text)
        assert pf.groups == ((("p1", "a"), ("p2", "b")),)

    def test_keys(self):
        pf = PartitionFilter.parse("dt=1,hh=00;dt=2")
        assert pf.keys == {"dt", "hh"}

    def test_empty_value_allowed(self):
        pf = PartitionFilter.parse("dt=")
        assert pf.groups == ((("dt", ""),),)

    @pytest.mark.parametrize("text", ["dt", "dt=1,hh", "=1"])
    def test_malformed(self, text):
        with pytest.raises(InvalidArgumentError, match="expected key=value"):
            PartitionFilter.parse(text)


class TestPartitionFilterMatches:
    def test_or_semantics(self):
        pf = PartitionFilter.parse("p1=a;p2=b")
        assert pf.matches({"p1": "a", "p2": "x"})
        assert pf.matches({"p1": "z", "p2": "b"})
        assert not pf.matches({"p1": "z", "p2": "y"})

    def test_and_semantics(self):
        pf = PartitionFilter.parse("p1=a/p2=b")
        assert pf.matches({"p1": "a", "p2": "b", "p3": "c"})
        assert not pf.matches({"p1": "a", "p2": "x"})

    def test_null_never_matches(self):
        pf = PartitionFilter.parse("dt=None")
        assert not pf.matches({"dt": None})
        assert not pf.matches({})


class TestPartitionFilterValueTypes:
    @pytest.mark.parametrize("text", ["hh=1", "hh=01", "hh=+1"])
    def test_int_partition(self, text):
        pf = PartitionFilter.parse(text)
        assert pf.matches({"hh": 1})
        assert not pf.matches({"hh": 10})

    @pytest.mark.parametrize(("text", "expected"), [("flag=true", True), ("flag=TRUE", True), ("flag=False", False)])
    def test_bool_partition(self, text, expected):
        pf = PartitionFilter.parse(text)
        assert pf.matches({"flag": expected})
        assert not pf.matches({"flag": not expected})

    def test_float_partition(self):
        assert PartitionFilter.parse("ratio=0.50").matches({"ratio": 0.5})

    def test_date_partition(self):
        pf = PartitionFilter.parse("dt=2024-01-01")
        assert pf.matches({"dt": date(2024, 1, 1)})
        assert not pf.matches({"dt": date(2024, 1, 2)})

    def test_string_partition_keeps_leading_zeros(self):
        pf = PartitionFilter.parse("hh=01")
        assert pf.matches({"hh": "01"})
        assert not pf.matches({"hh": "1"})

    @pytest.mark.parametrize(
        ("text", "values", "type_name"),
        [("hh=x", {"hh": 1}, "int"), ("flag=yes", {"flag": True}, "bool"), ("dt=today", {"dt": date(2024, 1, 1)}, "date")],
    )
    def test_unconvertible_value(self, text, values, type_name):
        pf = PartitionFilter.parse(text)
        with pytest.raises(InvalidArgumentError, match=f"is not a valid {type_name}"):
            pf.matches(values)

    def test_bound_predicate_converts(self):
        predicate = PartitionFilter.parse("dt=2024-01-01,hh=07").bind(["dt", "hh"])
        assert predicate.test(("2024-01-01", 7))
        assert not predicate.test(("2024-01-01", 8))


class TestPartitionFilterToWhere:
    def test_where_clause(self):
        pf = PartitionFilter.parse("dt=2024-01-01,hh=00;dt=2024-01-02")
        assert pf.to_where() == "(dt='2024-01-01' AND hh='00') OR (dt='2024-01-02')"

    def test_quotes_are_escaped(self):
        pf = PartitionFilter.parse("name=o'brien")
        assert pf.to_where() == "(name='o''brien')"


class TestPartitionPredicate:
    def test_bind_and_test(self):
        predicate = PartitionFilter.parse("p1=a;p2=b").bind(["p1", "p2", "p3"])
        assert predicate.test(("a", "x", "c"))
        assert predicate.test(("z", "b", "c"))
        assert not predicate.test(("z", "y", "c"))

    def test_bind_rejects_non_partition_column(self):
        pf = PartitionFilter.parse("dt=2024-01-01,user=42")
        with pytest.raises(InvalidArgumentError, match=r"non-partition column\(s\) \['user'\]"):
            pf.bind(["dt"])
