from prometheus_client import Counter, Gauge, Histogram

# 派发到工作池的任务数
TASKS_DISPATCHED = Counter(
    "nekopara_tasks_dispatched_total",
    "Total number of task nodes dispatched to the worker pool",
    ["template"],
)

# 任务执行结果统计
TASK_RESULTS = Counter(
    "nekopara_task_results_total",
    "Total number of finished task invocations",
    ["template", "status"],  # status: done, fail, skipped
)

# 模板函数耗时分布（不含闸门等待）
TASK_DURATION = Histogram(
    "nekopara_task_duration_seconds",
    "Time spent inside a template function",
    ["template"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

# 收集到的数据条目
DATA_ITEMS = Counter(
    "nekopara_data_items_total",
    "Total number of committed data nodes",
    ["template"],
)

# 因去重被忽略的URL
DUPLICATE_URLS = Counter(
    "nekopara_duplicate_urls_total",
    "Total number of task URLs skipped by deduplication",
)

# 闸门等待耗时分布
GATE_WAIT_DURATION = Histogram(
    "nekopara_gate_wait_seconds",
    "Time spent waiting for the delay gate",
)

# 工作池中排队与执行中的任务数（背压）
POOL_PENDING = Gauge(
    "nekopara_pool_pending",
    "Current number of queued and running jobs in the worker pool",
)

# 活跃 Worker 数量
ACTIVE_WORKERS = Gauge(
    "nekopara_active_workers",
    "Number of workers currently running a job",
)
