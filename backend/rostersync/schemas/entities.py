"""
Projected entities: the canonical, typed form of one imported record.

Raw rows are untyped dicts and live only at the boundary. The row
projector turns each into one of these variants, discriminated by
`kind`. Entities never hold other entity objects as store references;
links are by id or identity-key strings. The nested `instructors` /
`rooms` / `office_room` values are parse results that the preview
resolves into ids before anything is written.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class InstructorRef(BaseModel):
    """One instructor named on a schedule row, not yet resolved to a person."""
    first_name: str = ""
    last_name: str = ""
    instructor_id: str = Field("", description="Id from the scheduling export, if any")
    percentage: int = 100
    is_primary: bool = False
    is_staff: bool = False


class RoomEntity(BaseModel):
    kind: Literal["room"] = "room"
    space_key: str = Field(..., description="Canonical BUILDING:NUMBER key, e.g. DRAPER:201")
    display_name: str
    building_code: str = ""
    building_display_name: str = ""
    space_number: str = ""
    type: str = "Classroom"
    capacity: int | None = None
    is_active: bool = True

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind"})


class PersonEntity(BaseModel):
    kind: Literal["person"] = "person"
    first_name: str = ""
    last_name: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    baylor_id: str = ""
    title: str = ""
    job_title: str = ""
    department: str = ""
    office: str = ""
    office_space_id: str = ""
    external_ids: dict[str, Any] = Field(default_factory=dict)
    roles: list[str] = Field(default_factory=list)
    is_active: bool = True
    office_room: RoomEntity | None = Field(
        None, description="Parsed office location; resolved to office_space_id"
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind", "office_room"})


class ScheduleEntity(BaseModel):
    kind: Literal["schedule"] = "schedule"
    course_code: str = ""
    course_title: str = ""
    subject_code: str = ""
    catalog_number: str = ""
    department_code: str = ""
    course_level: int = 0
    section: str = ""
    crn: str = ""
    clss_id: str = ""
    term: str = ""
    term_code: str = ""
    academic_year: int | None = None
    credits: float | int | None = None
    enrollment: int | None = None
    max_enrollment: int | None = None
    schedule_type: str = ""
    instruction_method: str = ""
    status: str = ""
    part_of_term: str = ""
    is_online: bool = False
    online_mode: str | None = None
    location_type: str = "room"
    location_label: str = ""
    space_ids: list[str] = Field(default_factory=list)
    space_display_names: list[str] = Field(default_factory=list)
    meeting_patterns: list[dict[str, Any]] = Field(default_factory=list)
    cross_list_crns: list[str] = Field(default_factory=list)
    instructor_field: str = Field("", description="Raw instructor cell")
    instructor_name: str = ""
    row_hash: str = ""
    instructors: list[InstructorRef] = Field(default_factory=list)
    rooms: list[RoomEntity] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(exclude={"kind", "instructors", "rooms", "instructor_field"})


ProjectedEntity = Annotated[
    Union[ScheduleEntity, PersonEntity, RoomEntity],
    Field(discriminator="kind"),
]
