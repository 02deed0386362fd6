"""GraphQL documents used by sync and realignment."""

ACTOR_FIELDS = """
fragment ActorFields on Actor {
  __typename
  login
  avatarUrl(size: 200)
  ... on User { id name createdAt updatedAt }
  ... on Organization { id name createdAt updatedAt }
  ... on Bot { id }
  ... on Mannequin { id }
}
"""

REPOSITORY_FIELDS = """
fragment RepositoryFields on Repository {
  id
  name
  nameWithOwner
  url
  isPrivate
  createdAt
  updatedAt
  owner { ...ActorFields }
}
"""

PROJECT_FIELD_VALUE = """
fragment ProjectFieldValue on ProjectV2ItemFieldValue {
  __typename
  ... on ProjectV2ItemFieldSingleSelectValue { name updatedAt }
  ... on ProjectV2ItemFieldIterationValue { title updatedAt }
  ... on ProjectV2ItemFieldTextValue { text updatedAt }
  ... on ProjectV2ItemFieldNumberValue { number updatedAt }
  ... on ProjectV2ItemFieldDateValue { date updatedAt }
}
"""

ISSUE_FIELDS = """
fragment IssueFields on Issue {
  __typename
  id
  number
  title
  state
  url
  createdAt
  updatedAt
  closedAt
  author { ...ActorFields }
  labels(first: 50) { nodes { id name color } }
  assignees(first: 25) { nodes { ...ActorFields } }
  trackedIssues(first: 10) {
    totalCount
    nodes { id number title url state repository { nameWithOwner } }
  }
  trackedInIssues(first: 10) {
    totalCount
    nodes { id number title url state repository { nameWithOwner } }
  }
  projectItems(first: 10) {
    nodes {
      id
      createdAt
      updatedAt
      project { title }
      status: fieldValueByName(name: "Status") { ...ProjectFieldValue }
      priority: fieldValueByName(name: "Priority") { ...ProjectFieldValue }
      initiationOptions: fieldValueByName(name: "Initiation Options") { ...ProjectFieldValue }
      startDate: fieldValueByName(name: "Start date") { ...ProjectFieldValue }
    }
  }
  reactions(first: 25, orderBy: { field: CREATED_AT, direction: ASC }) {
    nodes { id content createdAt user { id login name avatarUrl(size: 200) } }
  }
  repository { ...RepositoryFields }
}
"""

COMMENT_FIELDS = """
fragment CommentFields on IssueComment {
  id
  url
  body
  createdAt
  updatedAt
  author { ...ActorFields }
}
"""

ORG_REPOSITORIES = (
    """
query OrganizationRepositories($login: String!, $cursor: String) {
  organization(login: $login) {
    repositories(first: 50, after: $cursor, orderBy: { field: PUSHED_AT, direction: DESC }) {
      pageInfo { hasNextPage endCursor }
      nodes { ...RepositoryFields }
    }
  }
}
"""
    + REPOSITORY_FIELDS
    + ACTOR_FIELDS
)

REPOSITORY_ISSUES = (
    """
query RepositoryIssues($owner: String!, $name: String!, $cursor: String, $since: DateTime) {
  repository(owner: $owner, name: $name) {
    issues(
      first: 25
      after: $cursor
      orderBy: { field: UPDATED_AT, direction: ASC }
      filterBy: { since: $since }
    ) {
      pageInfo { hasNextPage endCursor }
      nodes {
        ...IssueFields
        comments(first: 50) { totalCount nodes { ...CommentFields } }
      }
    }
  }
}
"""
    + ISSUE_FIELDS
    + COMMENT_FIELDS
    + REPOSITORY_FIELDS
    + PROJECT_FIELD_VALUE
    + ACTOR_FIELDS
)

REPOSITORY_PULL_REQUESTS = (
    """
query RepositoryPullRequests($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: 25, after: $cursor, orderBy: { field: UPDATED_AT, direction: DESC }) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        number
        title
        state
        url
        createdAt
        updatedAt
        closedAt
        mergedAt
        merged
        isDraft
        author { ...ActorFields }
        closingIssuesReferences(first: 10) {
          nodes { id number title url state repository { nameWithOwner } }
        }
        comments(first: 50) { totalCount nodes { ...CommentFields } }
        reviews(first: 50) {
          totalCount
          nodes { id state url body submittedAt author { ...ActorFields } }
        }
      }
    }
  }
}
"""
    + COMMENT_FIELDS
    + ACTOR_FIELDS
)

NODE_DETAILS = (
    """
query NodeDetails($ids: [ID!]!) {
  nodes(ids: $ids) {
    __typename
    ... on Issue { ...IssueFields }
  }
}
"""
    + ISSUE_FIELDS
    + REPOSITORY_FIELDS
    + PROJECT_FIELD_VALUE
    + ACTOR_FIELDS
)

RESOURCE_BY_URL = """
query NodeByUrl($url: URI!) {
  resource(url: $url) {
    __typename
    ... on Issue { id }
  }
}
"""
