# orchestrator/dao/base_dao.py

import operator
from typing import Type, TypeVar, Generic, Any, Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import inspect, or_, and_, func, select, update, delete
from sqlalchemy.sql.selectable import Select

# 控制平面和租户库各有一个 declarative base，所以这里不绑定具体的 Base
ModelType = TypeVar("ModelType", bound=Any)

# 条件三元组 (field, op, value) 支持的操作符
_OPERATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}

class BaseDao(Generic[ModelType]):
    def __init__(self, model_class: Type[ModelType], db_session: AsyncSession):
        self.model: Type[ModelType] = model_class
        self.db_session: AsyncSession = db_session
        primary_keys = inspect(model_class).primary_key
        if not primary_keys:
            raise ValueError(f"Model {model_class.__name__} does not have a primary key.")
        self.pk: str = primary_keys[0].name

    # ==============================================================================
    # 1. 实体/对象方法 (Object Methods)
    #    - 输入和输出都应该是 ORM 对象实例
    # ==============================================================================

    async def get_list(
        self,
        where: Optional[dict | list] = None,
        where_or: Optional[list] = None,
        options: Optional[List[Any]] = None,
        order: Optional[list] = None,
        page: int = 0,
        limit: int = 0,
        start_time: Optional[datetime | int] = None,
        end_time: Optional[datetime | int] = None,
        time_key: str = "created_at",
    ) -> list[ModelType]:
        stmt = self._quick_query(
            where=where, where_or=where_or, options=options, order=order,
            page=page, limit=limit, start_time=start_time, end_time=end_time, time_key=time_key
        )
        executed = await self.db_session.execute(stmt)
        return list(executed.scalars().all())

    async def get_one(
        self,
        where: Optional[dict | list] = None,
        where_or: Optional[list] = None,
        options: Optional[List[Any]] = None,
        order: Optional[list] = None
    ) -> Optional[ModelType]:
        stmt = self._quick_query(where=where, where_or=where_or, options=options, order=order)
        executed = await self.db_session.execute(stmt.limit(1))
        return executed.scalars().first()

    async def get_by_pk(self, pk_value: Any, options: Optional[List[Any]] = None) -> Optional[ModelType]:
        stmt = self._quick_query(where={self.pk: pk_value}, options=options)
        executed = await self.db_session.execute(stmt)
        return executed.scalars().first()

    async def get_by_uuid(self, uuid: str) -> Optional[ModelType]:
        return await self.get_one(where={"uuid": uuid})

    async def count(
        self,
        where: Optional[dict | list] = None,
        where_or: Optional[list] = None,
        start_time: Optional[datetime | int] = None,
        end_time: Optional[datetime | int] = None,
        time_key: str = "created_at"
    ) -> int:
        subquery_stmt = self._quick_query(
            where=where,
            where_or=where_or,
            start_time=start_time,
            end_time=end_time,
            time_key=time_key
        ).subquery()

        count_stmt = select(func.count()).select_from(subquery_stmt)

        executed = await self.db_session.execute(count_stmt)
        return executed.scalar() or 0

    async def add(self, instance: ModelType, auto_flush: bool = True) -> ModelType:
        self.db_session.add(instance)
        if auto_flush:
            await self.db_session.flush()
            await self.db_session.refresh(instance)
        return instance

    # ==============================================================================
    # 2. 数据/批量方法 (Data/Bulk Methods)
    #    - 用于高性能的、非对象驱动的操作
    # ==============================================================================

    async def update_where(self, where: dict | list, values: dict) -> int:
        """
        条件更新，返回受影响的行数。
        状态迁移都走这里: 把"期望的旧状态"放进 where，rowcount == 0 即表示迁移失败。
        """
        if not where or not values:
            return 0
        conditions = self._where_format(where)
        stmt = update(self.model).where(*conditions).values(values).execution_options(synchronize_session="fetch")
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    async def delete_where(self, where: dict | list) -> int:
        if not where:
            return 0
        conditions = self._where_format(where)
        stmt = delete(self.model).where(*conditions)
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    # ==============================================================================
    # 3. 聚合/数据查询方法 (Aggregation/Projection Methods)
    # ==============================================================================

    async def pluck(self, column_name: str, where: Optional[dict | list] = None, order: Optional[list] = None) -> list[Any]:
        stmt = select(getattr(self.model, column_name))
        stmt = self._quick_query(stmt=stmt, where=where, order=order)
        executed = await self.db_session.execute(stmt)
        return list(executed.scalars().all())

    async def count_by(
        self,
        column_name: str,
        where: Optional[dict | list] = None,
        start_time: Optional[datetime | int] = None,
        end_time: Optional[datetime | int] = None,
        time_key: str = "created_at"
    ) -> dict[Any, int]:
        column = getattr(self.model, column_name)
        stmt = select(column, func.count(getattr(self.model, self.pk)))
        stmt = self._quick_query(stmt=stmt, where=where, start_time=start_time, end_time=end_time, time_key=time_key)
        stmt = stmt.group_by(column)
        executed = await self.db_session.execute(stmt)
        return {key: cnt for key, cnt in executed.all()}

    # ==============================================================================
    # 4. 查询构建辅助方法 (Query Building Helpers)
    # ==============================================================================

    def _quick_query(
        self,
        stmt: Optional[Select] = None,
        where: Optional[dict | list] = None,
        where_or: Optional[list] = None,
        options: Optional[List[Any]] = None,
        order: Optional[list] = None,
        page: int = 0,
        limit: int = 0,
        start_time: Optional[datetime | int] = None,
        end_time: Optional[datetime | int] = None,
        time_key: str = "created_at"
    ) -> Select:
        """
        一个线性的、清晰的查询构建方法。
        start_time / end_time 可以只给一端。
        """
        if stmt is None:
            stmt = select(self.model)

        if where is not None:
            stmt = stmt.filter(*self._where_format(where))

        if where_or is not None:
            stmt = stmt.filter(or_(*self._where_format_each(where_or)))

        if start_time is not None:
            stmt = stmt.filter(getattr(self.model, time_key) >= self._convert_to_datetime(start_time))
        if end_time is not None:
            stmt = stmt.filter(getattr(self.model, time_key) <= self._convert_to_datetime(end_time))

        if options is not None:
            stmt = stmt.options(*options)

        if order is not None:
            stmt = stmt.order_by(*order)

        if limit > 0:
            stmt = self._paginate(stmt=stmt, page=page or 1, limit=limit)

        return stmt

    def _where_format_each(self, conditions: list) -> list:
        processed = []
        for condition in conditions:
            processed.extend(self._where_format([condition]))
        return processed

    def _where_format(self, conditions: list | dict, model: Optional[Type[Any]] = None) -> list:
        if model is None:
            model = self.model

        if not conditions:
            return []

        processed_conditions = []
        if isinstance(conditions, list):
            for condition in conditions:
                if isinstance(condition, (list, tuple)):
                    field, op, value = condition
                    column = getattr(model, field)
                    # 特殊处理 'in' / 'is' 操作符
                    if op == 'in':
                        expr = column.in_(value)
                    elif op == 'is':
                        expr = column.is_(value)
                    elif op == 'is not':
                        expr = column.is_not(value)
                    elif op in _OPERATORS:
                        expr = _OPERATORS[op](column, value)
                    else:
                        raise ValueError(f"Unsupported operator in where condition: {op}")
                    processed_conditions.append(expr)
                else:
                    processed_conditions.append(condition)
        elif isinstance(conditions, dict):
            processed_conditions = [getattr(model, field) == value for field, value in conditions.items()]
        if len(processed_conditions) > 1:
            processed_conditions = [and_(*processed_conditions)]
        return processed_conditions

    def _paginate(self, stmt: Optional[Select] = None, page: int = 0, limit: int = 0) -> Select:
        if stmt is None:
            stmt = select(self.model)
        page = int(page)
        limit = int(limit)
        if page > 0 and limit > 0:
            stmt = stmt.limit(limit).offset((page - 1) * limit)
        return stmt

    def _convert_to_datetime(self, date_str_or_timestamp: str | int | datetime) -> datetime:
        if isinstance(date_str_or_timestamp, datetime):
            return date_str_or_timestamp
        try:
            return datetime.fromtimestamp(int(date_str_or_timestamp))
        except (ValueError, TypeError):
            return datetime.strptime(str(date_str_or_timestamp), '%Y-%m-%d')
