import pytest

from mikrohosts.metrics import Counter, Generator, Histogram, Registry, new_registry


def _registered(generator):
    registry = Registry()
    generator.register(registry)
    return registry.render()


def test_generator_register():
    text = _registered(Generator())

    assert "# TYPE generator_cache_hits counter" in text
    assert "# TYPE generator_cache_misses counter" in text
    assert "# TYPE generator_time_duration histogram" in text


def test_generator_increment_cache_hits():
    gen = Generator()
    gen.increment_cache_hits()

    assert gen.cache_hits.value == 1
    assert "generator_cache_hits 1\n" in _registered(gen)


def test_generator_increment_cache_misses():
    gen = Generator()
    gen.increment_cache_misses()

    assert gen.cache_misses.value == 1
    assert "generator_cache_misses 1\n" in _registered(gen)


def test_generator_observe_generation_duration():
    gen = Generator()
    gen.observe_generation_duration(1.0)
    gen.observe_generation_duration(2.0)

    assert gen.duration.sum == 3
    assert gen.duration.count == 2

    text = _registered(gen)
    assert "generator_time_duration_sum 3\n" in text
    assert "generator_time_duration_count 2\n" in text
    assert 'generator_time_duration_bucket{le="1"} 1\n' in text
    assert 'generator_time_duration_bucket{le="2.5"} 2\n' in text
    assert 'generator_time_duration_bucket{le="+Inf"} 2\n' in text


def test_duplicate_registration_fails():
    registry = Registry()
    Generator().register(registry)

    with pytest.raises(ValueError, match="duplicate"):
        Generator().register(registry)


def test_counter_rendering():
    registry = Registry()
    counter = Counter("test", "Test metric.", namespace="foo", subsystem="bar")
    counter.inc()
    counter.inc()
    registry.register(counter)

    assert registry.render() == (
        "# HELP foo_bar_test Test metric.\n"
        "# TYPE foo_bar_test counter\n"
        "foo_bar_test 2\n"
    )


def test_histogram_buckets_are_cumulative():
    histogram = Histogram("h", "Help.", buckets=(1, 5))
    for value in (0.5, 3, 3, 10):
        histogram.observe(value)
    registry = Registry()
    registry.register(histogram)

    lines = registry.render().splitlines()

    assert lines[2:] == [
        'h_bucket{le="1"} 1',
        'h_bucket{le="5"} 3',
        'h_bucket{le="+Inf"} 4',
        "h_sum 16.5",
        "h_count 4",
    ]


def test_empty_registry_renders_nothing():
    assert Registry().render() == ""


def test_new_registry_has_common_metrics():
    text = new_registry().render()

    assert "# TYPE process_cpu_seconds_total counter" in text
    assert "process_start_time_seconds " in text
    assert "python_info{" in text
    assert 'python_gc_collections_total{generation="0"}' in text