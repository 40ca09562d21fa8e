# orchestrator/worker/tasks/__init__.py

# 1. 导入并导出所有公开任务
from .orchestration import execute_deployment_job_task, execute_template_sync_job_task
# 2. 导入注册中心
from ..main import TASK_FUNCTIONS

# 3. 将自己注册进去
TASK_FUNCTIONS.extend([
    execute_deployment_job_task,
    execute_template_sync_job_task
])
