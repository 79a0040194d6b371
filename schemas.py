"""
Database Schemas for BagPackStories

Each Pydantic model maps to a MongoDB collection using the lowercase
class name as the collection name (User -> "user", EmailTemplate ->
"emailtemplate"). Request payloads arrive in camelCase and are stored
snake_case; every model accepts both spellings.
"""
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Type

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    create_model,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def partial(model: Type[BaseModel]) -> Type[BaseModel]:
    """Copy of `model` where every field is optional, for PUT/PATCH bodies."""
    fields: Dict[str, Any] = {}
    for name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]
        fields[name] = (Optional[annotation], Field(None, description=info.description))
    return create_model(f"{model.__name__}Update", __base__=ApiModel, **fields)


HttpUrl = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^(https?://\S+)?$")]

PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def check_password_strength(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters")
    if not PASSWORD_RE.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return value


# -------------------------------------------------------------------
# Shared sub-documents
# -------------------------------------------------------------------
class SocialLinks(ApiModel):
    twitter: Optional[HttpUrl] = None
    instagram: Optional[HttpUrl] = None
    facebook: Optional[HttpUrl] = None
    website: Optional[HttpUrl] = None


class Coordinates(ApiModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ImageRef(ApiModel):
    url: str
    alt: Optional[str] = ""
    caption: Optional[str] = ""


# -------------------------------------------------------------------
# Users
# -------------------------------------------------------------------
Role = Literal["admin", "reader", "contributor"]


class User(ApiModel):
    """
    Collection: "user"
    """
    name: str = Field(..., max_length=50, description="Display name")
    email: EmailStr = Field(..., description="Unique, lowercase email address")
    password_hash: str = Field(..., description="passlib hash (bcrypt, argon2 accepted)")
    avatar: Optional[str] = Field(None, description="Avatar image URL")
    role: Role = Field("reader", description="admin|reader|contributor")
    bio: Optional[str] = Field("", max_length=500, description="Short bio")
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    is_premium: bool = False
    membership_expiry: Optional[datetime] = None
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = Field(None, description="sha256 of the emailed token")
    password_reset_expires: Optional[datetime] = None
    followers: List[str] = Field(default_factory=list, description="User ids following this user")
    following: List[str] = Field(default_factory=list, description="User ids this user follows")


class RegisterIn(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def strong_password(cls, v):
        return check_password_strength(v)


class LoginIn(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateIn(ApiModel):
    name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]] = None
    bio: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]] = None
    avatar: Optional[str] = None
    social_links: Optional[SocialLinks] = None


class PasswordUpdateIn(ApiModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, v):
        return check_password_strength(v)


class ForgotPasswordIn(ApiModel):
    email: EmailStr


class ResetPasswordIn(ApiModel):
    password: str = Field(..., min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class UserCreateIn(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "reader"
    bio: Optional[str] = Field("", max_length=500)
    avatar: Optional[str] = None
    is_premium: bool = False
    is_email_verified: bool = False


UserUpdateIn = partial(UserCreateIn)


# -------------------------------------------------------------------
# Posts & categories
# -------------------------------------------------------------------
PostStatus = Literal["draft", "pending", "published", "rejected", "inactive"]


class Seo(ApiModel):
    meta_title: Optional[str] = Field(None, max_length=60)
    meta_description: Optional[str] = Field(None, max_length=160)
    focus_keyword: Optional[str] = None
    og_image: Optional[str] = None


class PostDestination(ApiModel):
    country: Optional[str] = None
    city: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class PostIn(ApiModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    content: str = Field(..., min_length=1, description="Rich text / HTML body")
    excerpt: Optional[str] = Field("", max_length=500)
    featured_image: Optional[ImageRef] = None
    images: List[str] = Field(default_factory=list, description="Gallery image URLs")
    categories: List[str] = Field(default_factory=list, description="Category ids")
    tags: List[str] = Field(default_factory=list)
    seo: Seo = Field(default_factory=Seo)
    destination: Optional[PostDestination] = None
    status: PostStatus = "draft"
    is_premium: bool = False
    is_featured: bool = False


PostUpdateIn = partial(PostIn)


class Post(PostIn):
    """
    Collection: "post"
    Lifecycle: draft -> pending -> published | rejected -> (inactive)
    """
    slug: str
    author_id: str
    read_time: int = Field(1, description="Minutes, ceil(words / 200)")
    view_count: int = 0
    like_count: int = 0
    likes: List[str] = Field(default_factory=list, description="User ids who liked")
    submitted_at: Optional[datetime] = None
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    moderation_notes: Optional[str] = None
    published_at: Optional[datetime] = None


class PostStatusIn(ApiModel):
    status: PostStatus


class PostModerateIn(ApiModel):
    status: Literal["published", "rejected"]
    moderation_notes: Optional[str] = Field(None, max_length=1000)


class CategoryIn(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    description: Optional[str] = Field("", max_length=500)
    color: Optional[str] = Field("#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: bool = True


CategoryUpdateIn = partial(CategoryIn)


class Category(CategoryIn):
    """
    Collection: "category"
    """
    slug: str


# -------------------------------------------------------------------
# Destinations
# -------------------------------------------------------------------
class Activity(ApiModel):
    name: str
    icon: Optional[str] = None
    description: Optional[str] = None


class Temperature(ApiModel):
    summer: Optional[str] = None
    winter: Optional[str] = None


class DestinationIn(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    description: str = Field(..., min_length=1, max_length=5000)
    country: str
    continent: Optional[str] = None
    featured_image: Optional[str] = None
    gallery: List[str] = Field(default_factory=list)
    coordinates: Optional[Coordinates] = None
    best_time_to_visit: Optional[str] = None
    average_temperature: Temperature = Field(default_factory=Temperature)
    currency: Optional[str] = None
    language: Optional[str] = None
    timezone: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)
    highlights: List[str] = Field(default_factory=list)
    activities: List[Activity] = Field(default_factory=list)
    accommodation: List[str] = Field(default_factory=list)
    transportation: List[str] = Field(default_factory=list)
    local_cuisine: List[str] = Field(default_factory=list)
    travel_tips: List[str] = Field(default_factory=list)
    is_popular: bool = False
    is_featured: bool = False
    is_active: bool = True
    status: Literal["published", "draft", "inactive"] = "published"


DestinationUpdateIn = partial(DestinationIn)


class Destination(DestinationIn):
    """
    Collection: "destination"
    Publicly visible when is_active and status == "published".
    """
    slug: str


# -------------------------------------------------------------------
# Guides
# -------------------------------------------------------------------
GuideType = Literal["itinerary", "budget", "photography", "food", "adventure"]


class GuideDestination(ApiModel):
    name: str
    country: Optional[str] = None
    slug: Optional[str] = None


class GuideAuthor(ApiModel):
    name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None


class GuideBudget(ApiModel):
    range: Optional[str] = None
    details: Optional[str] = None


class GuideSection(ApiModel):
    title: str
    content: str
    tips: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)


class ItineraryDay(ApiModel):
    day: int = Field(..., ge=1)
    title: str
    activities: List[str] = Field(default_factory=list)
    meals: List[str] = Field(default_factory=list)
    accommodation: Optional[str] = None
    budget: Optional[str] = None


class PackingGroup(ApiModel):
    category: str
    items: List[str] = Field(default_factory=list)


class GuideResource(ApiModel):
    title: str
    type: Optional[str] = None
    url: Optional[str] = None


class GuideIn(ApiModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    description: str = Field(..., min_length=1, max_length=1000)
    type: GuideType
    destination: GuideDestination
    author: GuideAuthor = Field(default_factory=GuideAuthor)
    featured_image: Optional[str] = None
    duration: Optional[str] = None
    difficulty: Literal["Easy", "Moderate", "Challenging"] = "Moderate"
    budget: GuideBudget = Field(default_factory=GuideBudget)
    best_time: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)
    sections: List[GuideSection] = Field(default_factory=list)
    itinerary: List[ItineraryDay] = Field(default_factory=list)
    packing_list: List[PackingGroup] = Field(default_factory=list)
    resources: List[GuideResource] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    is_premium: bool = False
    is_featured: bool = False
    is_published: bool = False


GuideUpdateIn = partial(GuideIn)


class Guide(GuideIn):
    """
    Collection: "guide"
    """
    slug: str
    published_at: Optional[datetime] = None
    views: int = 0
    download_count: int = 0


# -------------------------------------------------------------------
# Travel resources (tools, apps, gear, services)
# -------------------------------------------------------------------
ResourceCategory = Literal[
    "Booking", "Gear", "Apps", "Websites", "Services", "Transportation", "Insurance", "Other"
]
ResourceKind = Literal["Tool", "Service", "Product", "Website", "App", "Guide", "Template"]


class ResourcePricing(ApiModel):
    type: Literal["Free", "Paid", "Freemium", "Subscription"]
    amount: Optional[float] = Field(None, ge=0)
    currency: str = "USD"
    description: str = Field(..., min_length=1)


class ResourceRating(ApiModel):
    overall: float = Field(0, ge=0, le=5)
    usability: float = Field(0, ge=0, le=5)
    value: float = Field(0, ge=0, le=5)
    support: float = Field(0, ge=0, le=5)
    features: float = Field(0, ge=0, le=5)


class ResourceIn(ApiModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=150)]
    description: str = Field(..., min_length=1)
    category: ResourceCategory
    type: ResourceKind
    url: Optional[HttpUrl] = None
    images: List[ImageRef] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    pricing: ResourcePricing
    rating: ResourceRating = Field(default_factory=ResourceRating)
    tags: List[str] = Field(default_factory=list)
    destinations: List[str] = Field(default_factory=list, description="Destination ids")
    is_affiliate: bool = False
    affiliate_link: Optional[HttpUrl] = None
    is_recommended: bool = False
    is_featured: bool = False
    is_active: bool = True


ResourceUpdateIn = partial(ResourceIn)


class Resource(ResourceIn):
    """
    Collection: "resource"
    """
    slug: str
    author_id: str
    total_reviews: int = 0
    average_rating: float = Field(0, ge=0, le=5)
    click_count: int = 0
    last_updated: Optional[datetime] = None


# -------------------------------------------------------------------
# Comments
# -------------------------------------------------------------------
ResourceType = Literal["blog", "destination", "guide", "photo"]
CommentStatus = Literal["pending", "approved", "rejected", "hidden", "flagged"]
FlagReason = Literal["spam", "inappropriate", "harassment", "off-topic", "other"]


class CommentAuthor(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
    email: EmailStr
    avatar: Optional[str] = None
    website: Optional[HttpUrl] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class CommentAttachment(ApiModel):
    type: Literal["image", "link"]
    url: str
    title: Optional[str] = None
    description: Optional[str] = None


class CommentIn(ApiModel):
    resource_type: ResourceType
    resource_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    author: CommentAuthor
    content: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]
    parent_id: Optional[str] = None
    attachments: List[CommentAttachment] = Field(default_factory=list)


class EditEntry(ApiModel):
    content: str
    edited_at: datetime
    reason: Optional[str] = None


class FlagEntry(ApiModel):
    reason: FlagReason
    reported_by: str
    reported_at: datetime
    description: Optional[str] = None


class Comment(CommentIn):
    """
    Collection: "comment"
    `status` alone decides visibility; replies are found through parent_id.
    """
    user_id: Optional[str] = None
    likes: int = Field(0, ge=0)
    dislikes: int = Field(0, ge=0)
    mentions: List[Dict[str, str]] = Field(default_factory=list)
    edited: bool = False
    edit_history: List[EditEntry] = Field(default_factory=list)
    flag_reasons: List[FlagEntry] = Field(default_factory=list)
    flag_count: int = 0
    status: CommentStatus = "approved"
    moderation_notes: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class CommentEditIn(ApiModel):
    content: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]
    reason: Optional[str] = Field(None, max_length=200)


class CommentFlagIn(ApiModel):
    reason: FlagReason
    description: Optional[str] = Field(None, max_length=500)


class CommentModerateIn(ApiModel):
    status: Literal["pending", "approved", "rejected", "hidden"]
    moderation_notes: Optional[str] = Field(None, max_length=1000)


# -------------------------------------------------------------------
# Contact & partners
# -------------------------------------------------------------------
class ContactIn(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    email: EmailStr
    subject: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=5000)]


class Contact(ContactIn):
    """
    Collection: "contact"
    """
    status: Literal["unread", "read", "replied"] = "unread"
    admin_notes: Optional[str] = None
    replied_at: Optional[datetime] = None


class ContactStatusIn(ApiModel):
    status: Literal["unread", "read", "replied"]
    admin_notes: Optional[str] = Field(None, max_length=1000)


class PartnerIn(ApiModel):
    first_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    last_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    email: EmailStr
    company: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    partnership_type: Literal["hotel", "tour", "brand", "creator", "other"]
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]


class Partner(PartnerIn):
    """
    Collection: "partner"
    """
    status: Literal["pending", "reviewed", "approved", "rejected"] = "pending"
    admin_notes: Optional[str] = Field(None, max_length=1000)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


class PartnerStatusIn(ApiModel):
    status: Literal["pending", "reviewed", "approved", "rejected"]
    admin_notes: Optional[str] = Field(None, max_length=1000)


# -------------------------------------------------------------------
# Newsletter & email templates
# -------------------------------------------------------------------
class NewsletterPreferences(ApiModel):
    destinations: bool = True
    travel_tips: bool = True
    photography: bool = True
    weekly_digest: bool = True
    deals: bool = False


class SubscribeIn(ApiModel):
    email: EmailStr
    name: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]] = None
    source: Literal["homepage", "blog", "popup", "footer", "manual", "newsletter-page"] = "homepage"
    preferences: NewsletterPreferences = Field(default_factory=NewsletterPreferences)


class Newsletter(SubscribeIn):
    """
    Collection: "newsletter"
    """
    status: Literal["subscribed", "unsubscribed"] = "subscribed"
    is_active: bool = True
    is_verified: bool = False
    verification_token: Optional[str] = None
    subscribed_at: Optional[datetime] = None
    unsubscribed_at: Optional[datetime] = None


class UnsubscribeIn(ApiModel):
    email: EmailStr


class PreferencesIn(ApiModel):
    email: EmailStr
    preferences: NewsletterPreferences


class SendTestIn(ApiModel):
    email: Optional[EmailStr] = None


TemplateType = Literal["contributor_submission", "post_approved", "weekly_newsletter", "custom"]


class EmailTemplateIn(ApiModel):
    key: Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, pattern=r"^[a-z0-9_\-]+$")]
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    subject: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = ""
    variables: List[str] = Field(default_factory=list, description="Declared {{variable}} names")
    type: TemplateType = "custom"
    is_active: bool = True
    description: Optional[str] = ""


EmailTemplateUpdateIn = partial(EmailTemplateIn)


class EmailTemplate(EmailTemplateIn):
    """
    Collection: "emailtemplate"
    """


class TemplatePreviewIn(ApiModel):
    variables: Dict[str, Any] = Field(default_factory=dict)


class TemplateSendIn(TemplatePreviewIn):
    to: List[EmailStr] = Field(..., min_length=1)


# -------------------------------------------------------------------
# Site settings (singleton)
# -------------------------------------------------------------------
class SeoSettings(ApiModel):
    meta_title: str = "BagPackStories - Travel Stories & Guides"
    meta_description: str = "Discover amazing travel stories, destinations and guides from around the world."
    meta_keywords: List[str] = Field(default_factory=lambda: ["travel", "stories", "destinations", "guides"])
    og_image: Optional[str] = None


class EmailSettings(ApiModel):
    from_email: str = "noreply@bagpackstories.in"
    from_name: str = "BagPackStories"


class GeneralSettings(ApiModel):
    posts_per_page: int = Field(10, ge=1, le=100)
    comments_enabled: bool = True
    registration_enabled: bool = True
    maintenance_mode: bool = False


class Theme(ApiModel):
    primary_color: str = "#3B82F6"
    secondary_color: str = "#10B981"
    logo: Optional[str] = None
    favicon: Optional[str] = None


class FeatureToggles(ApiModel):
    ai_itinerary_enabled: bool = True
    ai_itinerary_announcement_enabled: bool = True


class SiteSocialLinks(ApiModel):
    facebook: Optional[str] = ""
    twitter: Optional[str] = ""
    instagram: Optional[str] = ""
    youtube: Optional[str] = ""
    linkedin: Optional[str] = ""


class SiteSettings(ApiModel):
    """
    Collection: "sitesettings"
    Exactly one document, keyed by the unique `singleton` marker.
    """
    site_name: str = "BagPackStories"
    site_description: str = "Travel stories, destination guides and tips for backpackers."
    site_url: str = "https://bagpackstories.in"
    contact_email: str = "contact@bagpackstories.in"
    support_email: str = "support@bagpackstories.in"
    contact_phone: Optional[str] = ""
    contact_address: Optional[str] = ""
    business_hours: Optional[str] = "Monday - Friday, 9:00 AM - 6:00 PM"
    social_links: SiteSocialLinks = Field(default_factory=SiteSocialLinks)
    seo_settings: SeoSettings = Field(default_factory=SeoSettings)
    email_settings: EmailSettings = Field(default_factory=EmailSettings)
    general_settings: GeneralSettings = Field(default_factory=GeneralSettings)
    theme: Theme = Field(default_factory=Theme)
    feature_toggles: FeatureToggles = Field(default_factory=FeatureToggles)


# -------------------------------------------------------------------
# Photos
# -------------------------------------------------------------------
PhotoCategory = Literal["landscape", "architecture", "food", "culture", "adventure", "wildlife", "people", "other"]


class PhotoLocation(ApiModel):
    country: str
    city: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Photographer(ApiModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    email: EmailStr
    user_id: Optional[str] = None


class PhotoIn(ApiModel):
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    description: Optional[str] = Field("", max_length=500)
    image_url: str = Field(..., min_length=1)
    thumbnail_url: Optional[str] = None
    location: PhotoLocation
    photographer: Photographer
    tags: List[str] = Field(default_factory=list)
    category: PhotoCategory = "other"
    camera: Optional[str] = None


class Photo(PhotoIn):
    """
    Collection: "photo"
    """
    status: Literal["pending", "approved", "rejected"] = "pending"
    moderation_notes: Optional[str] = None
    likes: int = 0
    views: int = 0
    downloads: int = 0
    is_public: bool = True
    is_featured: bool = False
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None


class PhotoModerateIn(ApiModel):
    status: Literal["approved", "rejected"]
    moderation_notes: Optional[str] = Field(None, max_length=1000)
    is_featured: Optional[bool] = None


class PhotoStatusIn(ApiModel):
    status: Literal["pending", "approved", "rejected"]
    is_public: Optional[bool] = None
    is_featured: Optional[bool] = None
