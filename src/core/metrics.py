from prometheus_client import Counter, Gauge, Histogram

# 任务创建统计
TASKS_CREATED = Counter(
    "crawler_tasks_created_total",
    "Total number of crawl tasks enqueued",
    ["source", "priority"],  # priority: HIGH, MEDIUM, LOW
)

# 任务结果统计
TASKS_FINISHED = Counter(
    "crawler_tasks_finished_total",
    "Total number of crawl task attempts by outcome",
    ["source", "outcome"],  # outcome: completed, retried, failed
)

# 执行失败统计（按错误类型）
TASK_ERRORS = Counter(
    "crawler_task_errors_total",
    "Total number of failed crawl attempts",
    ["source", "error_type"],  # error_type: network, timeout, parse, rate_limit, blocked, unknown
)

# 采集条目统计
ITEMS_COLLECTED = Counter(
    "crawler_items_collected_total",
    "Total number of items reported by the crawl executor",
    ["source"],
)

# 任务执行耗时分布
TASK_DURATION = Histogram(
    "crawler_task_duration_seconds",
    "Time spent executing a crawl task",
    ["source"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# 队列大小（背压）
QUEUE_SIZE = Gauge(
    "crawler_queue_size",
    "Current number of tasks in the queue",
    ["state"],  # state: pending, running
)

# 外部 sink 错误统计
SINK_ERRORS = Counter(
    "crawler_sink_errors_total",
    "Total number of swallowed execution-log / notification errors",
    ["sink"],  # sink: execution_log, notifier, directory
)

# 事件循环延迟
EVENT_LOOP_LAG = Histogram(
    "crawler_event_loop_lag_seconds",
    "Delay between expected and actual monitor wake-ups",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)
